"""
Proposal Forge

Generation and learning pipeline for freelance job proposals:
- Job post analysis into structured signal
- Two-tier LLM orchestration under a hard spending ceiling
- Quality scoring including a machine-written risk heuristic
- Per-user voice profiles that adapt from edits as they mature

Proposals are drafts for the user to review and send; nothing here
submits anything on their behalf.
"""

__version__ = "1.0.0"
