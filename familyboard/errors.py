from enum import Enum


class FamilyBoardError(Exception):
    """Base class for failures the API turns into an error response."""

    status_code = 500
    public_message = "Internal error"


class UpstreamUnavailableError(FamilyBoardError):
    """The store or the generative service could not be reached or answered non-2xx."""

    status_code = 502
    public_message = "Upstream service unavailable, try again"


class MalformedResponseError(FamilyBoardError):
    """The generative service answered with text that does not fit the expected shape."""

    status_code = 502
    public_message = "Upstream service returned an unexpected response"


class MissingConfigurationError(FamilyBoardError):
    status_code = 500
    public_message = "Service is not configured"


class LedgerReadError(UpstreamUnavailableError):
    public_message = "Could not read points data, try again"


class ChildNotFoundError(FamilyBoardError):
    status_code = 404
    public_message = "Child not found"


class PointsConflictError(FamilyBoardError):
    """The balance kept changing while a deduction was being applied."""

    status_code = 409
    public_message = "Points changed in the meantime, try again"


class ClaimOutcome(str, Enum):
    claimed = "claimed"
    already_claimed = "already_claimed"
    insufficient_points = "insufficient_points"
    reward_not_found = "reward_not_found"


class CompletionOutcome(str, Enum):
    completed = "completed"
    already_completed = "already_completed"
    not_found = "not_found"


class RiddleOutcome(str, Enum):
    correct = "correct"
    incorrect = "incorrect"
    already_solved = "already_solved"
    no_riddle = "no_riddle"
    insufficient_points = "insufficient_points"
    hint_unlocked = "hint_unlocked"
    no_hint = "no_hint"


class PiggyBankOutcome(str, Enum):
    ok = "ok"
    invalid_amount = "invalid_amount"


OUTCOME_MESSAGES = {
    ClaimOutcome.claimed: "Reward claimed",
    ClaimOutcome.already_claimed: "This reward has already been claimed",
    ClaimOutcome.insufficient_points: "Not enough points",
    ClaimOutcome.reward_not_found: "Reward not found",
    CompletionOutcome.completed: "Task completed",
    CompletionOutcome.already_completed: "This task was already completed today",
    CompletionOutcome.not_found: "Task not found",
    RiddleOutcome.correct: "Correct answer",
    RiddleOutcome.incorrect: "That is not the right answer, try again",
    RiddleOutcome.already_solved: "Today's riddle is already solved",
    RiddleOutcome.no_riddle: "No riddle available today",
    RiddleOutcome.insufficient_points: "Not enough points",
    RiddleOutcome.hint_unlocked: "Hint unlocked",
    RiddleOutcome.no_hint: "This riddle has no hint",
    PiggyBankOutcome.ok: "Done",
    PiggyBankOutcome.invalid_amount: "Amount must be positive and within the available balance",
}
