class ChallengeError(Exception):
    """Base class for challenge service failures."""


class ConflictRetriesExhausted(ChallengeError):
    """Every compare-and-swap attempt lost a race; the caller may retry."""

    retryable = True

    def __init__(self, challenge_id: str, attempts: int):
        super().__init__(f"challenge {challenge_id} still contended after {attempts} attempts")
        self.challenge_id = challenge_id
        self.attempts = attempts
