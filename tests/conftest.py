"""Pytest configuration and fixtures."""

import asyncio
import json
import os
import tempfile
from typing import Callable, List, Optional, Union

import pytest

_DATA_DIR = tempfile.mkdtemp(prefix="proposal_forge_test_")

os.environ["OPENROUTER_API_KEY"] = "test-key"
os.environ["LOG_TO_FILE"] = "false"
os.environ["DATA_DIR"] = _DATA_DIR
os.environ["DB_PATH"] = os.path.join(_DATA_DIR, "test.db")
os.environ["BUDGET_CEILING"] = "10.0"
os.environ["ALLOW_DEGRADED_GENERATION"] = "false"

from proposal_forge.ai_processing.llm_manager import CompletionProvider, LLMGateway, LLMResponse
from proposal_forge.config import LLMConfig
from proposal_forge.config.database import DatabaseManager
from proposal_forge.utils.retry import RetryPolicy


SAMPLE_JOB_POST = """Hi, I'm Maria, operations lead at Northwind Goods, a home decor store selling through Shopify. We carry about 2,000 products and keep stock in a separate warehouse system that exposes a REST API. Right now our team updates Shopify inventory by hand from CSV exports every morning, and orders regularly slip through for items we no longer have.

What we need:
1. Sync Shopify inventory with our warehouse system every fifteen minutes, in both directions where it makes sense.
2. Build a nightly reconciliation report that lists every product whose counts differ between the two systems, emailed to the operations team as a spreadsheet.
3. Write documentation for the sync process so our in-house developer can maintain it after handover.

Technical details: the warehouse API uses token authentication and returns JSON. We already have a small PostgreSQL database on a cloud server that we use for order reporting, and we would like the sync to log each run there. Python is our preferred language because our developer knows it well. The Shopify store is on the Advanced plan, so the Admin API rate limits should be generous enough.

To apply, tell us how you would handle products that exist in one system but not the other, how you would keep the sync from overwriting a manual correction made in the last hour, and which parts of the work you would build first. Please mention similar Shopify or inventory integrations you have built, with a short description of the result.

Budget: fixed price $1,500, with payment released in two milestones. Payment method verified, 12 hires, 4.9 out of 5 rating. We want the first version running within three weeks and are happy to answer questions during a short call before you start."""

SAMPLE_ANALYSIS = {
    "client_name": "Maria",
    "requirements": [
        "Sync Shopify inventory with the warehouse system",
        "Nightly reconciliation report",
        "Documentation for the sync process",
    ],
    "key_skills": ["Python", "Shopify API", "PostgreSQL"],
    "hidden_needs": [],
    "job_type": "software_development",
}

SAMPLE_PROPOSAL = """Hi Maria, I noticed your team is still copying CSV exports into Shopify every morning, and that is exactly how orders slip through for items you no longer have. I have fixed this problem before, and the real issue is usually timing rather than the data itself.

My plan is to sync Shopify inventory with the warehouse system every fifteen minutes using Python and the Shopify API. Each run would compare counts, skip any product corrected by hand in the last hour, and log the result to your PostgreSQL database. Products that exist in only one system go to a review list instead of being created automatically.

Every night a reconciliation report would list the products whose counts still differ, sent to your operations team as a spreadsheet. Last spring I built a similar sync for a furniture store with 3,500 products, and their oversold orders dropped from about twenty a week to one or two. The same approach fits your store well.

I would start with the sync itself, then the report, and finish with clear documentation for the sync process so your developer can maintain it. I can have a first version running within two weeks. Could we do a short call this week to go over the warehouse API?"""

Responder = Union[LLMResponse, Callable[..., LLMResponse]]


def ok(content: str, prompt_tokens: int = 400, completion_tokens: int = 300) -> LLMResponse:
    return LLMResponse(
        success=True,
        content=content,
        model="fake-model",
        usage={"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens}
    )


def transient(status_code: int = 503) -> LLMResponse:
    return LLMResponse(success=False, error=f"Provider API error {status_code}", status_code=status_code, transient=True)


def fatal(status_code: int = 401) -> LLMResponse:
    return LLMResponse(success=False, error=f"Provider API error {status_code}", status_code=status_code)


class FakeProvider(CompletionProvider):
    """Scripted provider. Extraction calls get the analysis, generation calls the proposal."""

    def __init__(self,
                 analysis: Optional[dict] = None,
                 proposal: str = SAMPLE_PROPOSAL,
                 script: Optional[List[Responder]] = None,
                 delay: float = 0.0,
                 generation_delay: float = 0.0):
        self.config = LLMConfig()
        self.analysis = SAMPLE_ANALYSIS if analysis is None else analysis
        self.proposal = proposal
        self.script = list(script or [])
        self.delay = delay
        self.generation_delay = generation_delay
        self.calls = []
        self.cancelled_calls = 0

    async def generate_text(self, prompt, system_prompt="", model=None, max_tokens=1024, temperature=0.7):
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt, "model": model, "max_tokens": max_tokens})
        delay = self.delay if model == self.config.extraction_model else self.delay + self.generation_delay
        try:
            if delay:
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self.cancelled_calls += 1
            raise

        if self.script:
            step = self.script.pop(0)
            return step(prompt=prompt, system_prompt=system_prompt, model=model) if callable(step) else step

        if model == self.config.extraction_model and "<job_post>" in prompt:
            return ok(json.dumps(self.analysis), prompt_tokens=500, completion_tokens=120)
        return ok(self.proposal)

    def is_available(self):
        return True

    def get_model_name(self):
        return self.config.generation_model

    def calls_for(self, model: str) -> List[dict]:
        return [call for call in self.calls if call["model"] == model]


def fast_retry_policy(max_attempts: int = 3) -> RetryPolicy:
    return RetryPolicy(max_attempts=max_attempts, base_delay_seconds=0.0, backoff_multiplier=2.0, max_backoff_seconds=0.0)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def gateway(fake_provider):
    return make_gateway(fake_provider)


@pytest.fixture
def db_manager(tmp_path):
    return DatabaseManager(str(tmp_path / "proposal_forge.db"))


@pytest.fixture
def sample_job_post():
    return SAMPLE_JOB_POST


@pytest.fixture
def sample_proposal():
    return SAMPLE_PROPOSAL


def make_gateway(provider: CompletionProvider, max_attempts: int = 3) -> LLMGateway:
    return LLMGateway(provider=provider, config=LLMConfig(), retry_policy=fast_retry_policy(max_attempts))
