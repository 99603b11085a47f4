from __future__ import annotations


class PatternerError(Exception):
    """Base error for the pattern engine."""


class CandidateStateError(PatternerError):
    """Raised when a reminder candidate would move out of a terminal status."""

    def __init__(self, candidate_id: str, status: str, target: str):
        super().__init__(f"Candidate {candidate_id} is {status}; cannot mark as {target}")
        self.candidate_id = candidate_id
        self.status = status
        self.target = target
