"""Models package."""

from .user import User
from .credit_ledger import CreditLedger
from .generation import Generation
from .prompt_suggestion import PromptSuggestion
