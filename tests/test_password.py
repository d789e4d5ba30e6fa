"""Password hashing and strength rules."""
import pytest

from app.core.password_validator import PasswordValidator


class TestPasswordHasher:

    def test_hash_and_verify(self, hasher):
        hashed = hasher.hash_password("Str0ng!1")

        assert hashed != "Str0ng!1"
        assert hasher.verify_password("Str0ng!1", hashed) is True
        assert hasher.verify_password("wrong", hashed) is False

    def test_invalid_hash_does_not_raise(self, hasher):
        assert hasher.verify_password("Str0ng!1", "not-a-hash") is False
        assert hasher.needs_rehash("not-a-hash") is True

    def test_burn_verification_never_succeeds(self, hasher):
        assert hasher.burn_verification("Str0ng!1") is None


class TestPasswordValidator:

    @pytest.fixture
    def validator(self) -> PasswordValidator:
        return PasswordValidator(min_length=8, min_score=0)

    def test_accepts_all_character_classes(self, validator):
        assert validator.validate_password_strength("Str0ng!1")["valid"] is True

    @pytest.mark.parametrize("password", ["Sh0rt!", "alllower1!", "ALLUPPER1!", "NoDigits!!", "NoSymbol11"])
    def test_rejects_missing_requirements(self, validator, password):
        result = validator.validate_password_strength(password)
        assert result["valid"] is False
        assert result["suggestions"]

    def test_zxcvbn_score_floor(self):
        validator = PasswordValidator(min_length=8, min_score=3)
        assert validator.validate_password_strength("Passw0rd!")["valid"] is False
        assert validator.validate_password_strength("c0rrect-Horse-battery-staple")["valid"] is True
