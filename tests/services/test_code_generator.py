"""
Test suite for referral code generation and format validation.

@module test_code_generator
@since 1.0.0
"""

import pytest
from unittest.mock import patch

from wallet_referrals.services.code_generator import (
    CHARSET,
    CODE_LENGTH,
    CodeGenerationError,
    generate_code,
    generate_unique_code,
    is_valid_code_format,
    is_valid_custom_code,
    normalize_code,
)
from conftest import add_referrer


class TestGenerateCode:
    """Random code production."""

    def test_generated_codes_have_valid_format(self):
        for _ in range(500):
            code = generate_code()
            assert len(code) == CODE_LENGTH
            assert is_valid_code_format(code)

    def test_generated_codes_exclude_ambiguous_characters(self):
        ambiguous = set("0O1Il")
        assert not ambiguous & set(CHARSET)
        for _ in range(500):
            assert not ambiguous & set(generate_code())

    def test_charset_size(self):
        assert len(CHARSET) == 32
        assert len(set(CHARSET)) == 32


class TestFormatValidation:
    """Database-free checks."""

    @pytest.mark.parametrize("code", ["ABC234", "abc234", "ZZZZZZ", "234567"])
    def test_valid_generated_format(self, code):
        assert is_valid_code_format(code)

    @pytest.mark.parametrize("code", ["", None, "ABC23", "ABC2345", "ABC0DE", "ABCIDE", "AB-234"])
    def test_invalid_generated_format(self, code):
        assert not is_valid_code_format(code)

    @pytest.mark.parametrize("code", ["alice", "ALICE_2024", "spring-promo", "a" * 20])
    def test_valid_custom_code(self, code):
        assert is_valid_custom_code(code)

    @pytest.mark.parametrize("code", ["", None, "has space", "emoji!", "a" * 21, "dot.code"])
    def test_invalid_custom_code(self, code):
        assert not is_valid_custom_code(code)

    def test_normalize_code(self):
        assert normalize_code("  abc123 ") == "ABC123"


class TestGenerateUniqueCode:
    """Collision retries against the registry."""

    async def test_skips_codes_already_in_registry(self, db, alice):
        await add_referrer(db, alice, codes=["TAKEN2"])

        with patch(
            "wallet_referrals.services.code_generator.generate_code",
            side_effect=["TAKEN2", "FRESH3"],
        ):
            code = await generate_unique_code(db)

        assert code == "FRESH3"

    async def test_exhaustion_raises(self, db, alice):
        await add_referrer(db, alice, codes=["TAKEN2"])

        with patch(
            "wallet_referrals.services.code_generator.generate_code",
            return_value="TAKEN2",
        ) as generator:
            with pytest.raises(CodeGenerationError):
                await generate_unique_code(db, max_attempts=3)

        assert generator.call_count == 3
