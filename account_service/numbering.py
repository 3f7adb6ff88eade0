"""
Account Number Generation Module

Builds human-facing account numbers of the form <prefix><typeCode><sequence>,
e.g. BANK1CUR042. The sequence is a random zero-padded numeral; candidates are
checked against the store and regenerated on collision. The store's unique
constraint remains the real guarantee under concurrent creation.
"""

import random
import re
from typing import Callable, Optional

from .accounts import AccountType
from .errors import AccountNumberExhausted, ValidationFailed
from .logging_config import get_logger


logger = get_logger("account_service.numbering")


class AccountNumberGenerator:
    """Generates unique, type-tagged account numbers"""

    def __init__(self, prefix: str = "BANK1", sequence_length: int = 3,
                 max_attempts: int = 100, rng: Optional[random.Random] = None):
        if not prefix or not prefix.isalnum():
            raise ValueError("Account number prefix must be non-empty and alphanumeric")
        if sequence_length < 1:
            raise ValueError("Sequence length must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.prefix = prefix.upper()
        self.sequence_length = sequence_length
        self.max_attempts = max_attempts
        self._rng = rng or random.SystemRandom()
        self._pattern = re.compile(
            rf"^{re.escape(self.prefix)}(CUR|SAV)(\d{{{sequence_length}}})$"
        )

    @property
    def capacity(self) -> int:
        """Number of distinct sequences available per account type"""
        return 10 ** self.sequence_length - 1

    def _candidate(self, account_type: AccountType) -> str:
        sequence = self._rng.randint(1, self.capacity)
        return f"{self.prefix}{account_type.code}{sequence:0{self.sequence_length}d}"

    def generate(self, account_type: AccountType, exists: Callable[[str], bool]) -> str:
        """
        Generate an account number not currently present in the store.

        Args:
            account_type: Type whose code is embedded in the number
            exists: Predicate reporting whether a number is already taken

        Returns:
            An account number for which exists() returned False

        Raises:
            AccountNumberExhausted: if every attempt collided
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self._candidate(account_type)
            if not exists(candidate):
                if attempt > 1:
                    logger.debug(f"Generated {candidate} after {attempt} attempts")
                return candidate

        logger.error(
            f"Account number space exhausted for {account_type.value} "
            f"after {self.max_attempts} attempts"
        )
        raise AccountNumberExhausted(account_type.value, self.max_attempts)

    def is_valid(self, account_number: Optional[str]) -> bool:
        """Check if a string is a well-formed account number for this prefix"""
        if not account_number:
            return False
        match = self._pattern.match(account_number)
        return bool(match) and int(match.group(2)) > 0

    def extract_account_type(self, account_number: str) -> AccountType:
        """Recover the account type from a well-formed number"""
        if not self.is_valid(account_number):
            raise ValidationFailed(
                f"Invalid account number format: {account_number}",
                {"accountNumber": account_number}
            )
        code = self._pattern.match(account_number).group(1)
        return AccountType.from_code(code)
