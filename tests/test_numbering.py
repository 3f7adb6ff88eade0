"""
Tests for account number generation
"""

import random
import re

import pytest

from account_service.accounts import AccountType
from account_service.errors import AccountNumberExhausted, ValidationFailed
from account_service.numbering import AccountNumberGenerator


class TestAccountNumberGenerator:
    """Test account number format and collision handling"""

    def setup_method(self):
        """Set up test fixtures"""
        self.generator = AccountNumberGenerator(rng=random.Random(42))

    def test_format(self):
        number = self.generator.generate(AccountType.CURRENT, lambda n: False)
        assert re.fullmatch(r"BANK1CUR\d{3}", number)
        assert number != "BANK1CUR000"

        savings = self.generator.generate(AccountType.SAVINGS, lambda n: False)
        assert savings.startswith("BANK1SAV")

    def test_custom_prefix_and_width(self):
        generator = AccountNumberGenerator(prefix="xyz9", sequence_length=6, rng=random.Random(1))
        number = generator.generate(AccountType.SAVINGS, lambda n: False)
        assert re.fullmatch(r"XYZ9SAV\d{6}", number)

    def test_collision_retries(self):
        seen = []

        def exists(candidate):
            seen.append(candidate)
            return len(seen) < 5

        number = self.generator.generate(AccountType.CURRENT, exists)

        assert len(seen) == 5
        assert number == seen[-1]

    def test_exhaustion_after_max_attempts(self):
        generator = AccountNumberGenerator(max_attempts=100, rng=random.Random(7))
        calls = []

        def always_taken(candidate):
            calls.append(candidate)
            return True

        with pytest.raises(AccountNumberExhausted) as exc_info:
            generator.generate(AccountType.SAVINGS, always_taken)

        assert len(calls) == 100
        assert exc_info.value.attempts == 100
        assert exc_info.value.error_code == "ACCOUNT_GENERATION_FAILED"

    def test_generated_numbers_avoid_taken_ones(self):
        generator = AccountNumberGenerator(sequence_length=1, rng=random.Random(3))
        taken = {f"BANK1CUR{i}" for i in range(1, 9)}

        assert generator.generate(AccountType.CURRENT, taken.__contains__) == "BANK1CUR9"

    def test_is_valid(self):
        assert self.generator.is_valid("BANK1CUR042")
        assert self.generator.is_valid("BANK1SAV999")
        assert not self.generator.is_valid("BANK1CUR000")
        assert not self.generator.is_valid("BANK1CUR42")
        assert not self.generator.is_valid("BANK1XYZ042")
        assert not self.generator.is_valid("BANK2CUR042")
        assert not self.generator.is_valid("")
        assert not self.generator.is_valid(None)

    def test_extract_account_type(self):
        assert self.generator.extract_account_type("BANK1CUR042") == AccountType.CURRENT
        assert self.generator.extract_account_type("BANK1SAV001") == AccountType.SAVINGS

        with pytest.raises(ValidationFailed):
            self.generator.extract_account_type("garbage")

    @pytest.mark.parametrize("kwargs", [
        {"prefix": ""},
        {"prefix": "BANK-1"},
        {"sequence_length": 0},
        {"max_attempts": 0},
    ])
    def test_invalid_configuration(self, kwargs):
        with pytest.raises(ValueError):
            AccountNumberGenerator(**kwargs)
