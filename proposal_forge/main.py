"""
Main application entry point for the proposal generation pipeline.

Runs a system check, and when given a job post file, generates one
proposal for it:

    proposal-forge [JOB_POST_FILE] [USER_ID]
"""

import asyncio
import sqlite3
import sys
import uuid
from pathlib import Path

from proposal_forge.config import DatabaseManager, get_config, validate_config
from proposal_forge.utils import setup_logging, get_workflow_logger
from proposal_forge.ai_processing.cost_ledger import CostLedger
from proposal_forge.ai_processing.llm_manager import get_llm_gateway
from proposal_forge.errors import ProposalForgeError
from proposal_forge.workflow_orchestrator import GenerationOrchestrator, ProposalService


async def test_system_components() -> bool:
    """Check configuration, storage and the provider before doing any work."""
    logger = get_workflow_logger()
    config = get_config()

    issues = validate_config()
    for problem in issues["errors"]:
        logger.warning(f"⚠️ Config error: {problem}")
    for problem in issues["warnings"]:
        logger.info(f"Config warning: {problem}")

    try:
        stats = DatabaseManager(config.db_path).get_stats()
    except sqlite3.Error as e:
        logger.error(f"❌ Storage unavailable at {config.db_path}: {e}")
        return False
    logger.info("✅ Storage ready", **stats)

    provider_info = get_llm_gateway().get_provider_info()
    if provider_info["available"]:
        logger.info("✅ Provider configured", **{k: v for k, v in provider_info.items() if k != "available"})
    else:
        logger.warning("⚠️ No provider API key - set OPENROUTER_API_KEY in .env")

    ledger = CostLedger(db_manager=DatabaseManager(config.db_path))
    status = ledger.get_status()
    logger.info(f"Budget: ${status['committed']:.4f} of ${status['ceiling']:.2f} used this {config.budget.period} period")
    return True


async def generate_from_file(path: Path, user_id: str) -> int:
    logger = get_workflow_logger()
    job_post_text = path.read_text(encoding="utf-8")

    db_manager = DatabaseManager(get_config().db_path)
    service = ProposalService(GenerationOrchestrator(db_manager=db_manager), db_manager=db_manager)

    try:
        proposal = await service.generate_proposal(job_post_text, user_id, session_id=uuid.uuid4().hex)
    except ProposalForgeError as e:
        logger.error(f"Generation failed ({e.code}): {e}")
        return 1

    quality = proposal.quality_score
    print(proposal.text)
    print()
    print(f"Template: {proposal.template_id}")
    print(f"Quality: {quality.category.value} ({quality.aggregate:.2f}) - "
          f"personalization {quality.personalization:.1f}, hook {quality.hook:.1f}, "
          f"structure {quality.structure:.1f}, AI risk {quality.ai_detection_risk.value}")
    print(f"Cost: ${proposal.generation_cost:.4f}")
    return 0


async def main(argv=None) -> int:
    """Main application entry point."""
    argv = list(sys.argv[1:] if argv is None else argv)

    setup_logging()
    logger = get_workflow_logger()
    logger.info("Starting Proposal Forge")

    if not await test_system_components():
        logger.error("System component checks failed. Please check configuration.")
        return 1

    if not argv:
        logger.info("System is ready. Pass a job post file to generate a proposal.")
        return 0

    path = Path(argv[0])
    if not path.is_file():
        logger.error(f"Job post file not found: {path}")
        return 1

    user_id = argv[1] if len(argv) > 1 else "default"
    return await generate_from_file(path, user_id)


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
