from zxcvbn import zxcvbn
import re
from typing import Dict, List, Optional
from config import settings


class PasswordValidator:
    """Password strength validator"""

    def __init__(self, min_length: int = settings.PASSWORD_MIN_LENGTH, min_score: int = settings.PASSWORD_MIN_SCORE):
        self.min_length = min_length
        self.min_score = min_score

    def validate_password_strength(self, password: str, user_inputs: Optional[List[str]] = None) -> Dict:
        # Basic length check
        if len(password) < self.min_length:
            return {
                "valid": False,
                "score": 0,
                "feedback": f"Password must be at least {self.min_length} characters long",
                "suggestions": [f"Use at least {self.min_length} characters"]
            }

        # Check character requirements
        errors = []
        if settings.PASSWORD_REQUIRE_UPPERCASE and not re.search(r'[A-Z]', password):
            errors.append("at least one uppercase letter")

        if settings.PASSWORD_REQUIRE_LOWERCASE and not re.search(r'[a-z]', password):
            errors.append("at least one lowercase letter")

        if settings.PASSWORD_REQUIRE_DIGIT and not re.search(r'\d', password):
            errors.append("at least one digit")

        if settings.PASSWORD_REQUIRE_SPECIAL and not re.search(r'[^A-Za-z0-9]', password):
            errors.append("at least one special character")

        if errors:
            return {
                "valid": False,
                "score": 0,
                "feedback": f"Password must contain {', '.join(errors)}",
                "suggestions": [f"Add {error}" for error in errors]
            }

        if self.min_score <= 0:
            return {"valid": True, "score": None, "feedback": "", "suggestions": []}

        result = zxcvbn(password, user_inputs=user_inputs or [])
        is_valid = result['score'] >= self.min_score

        feedback_msg = result['feedback'].get('warning', '')
        suggestions = result['feedback'].get('suggestions', [])

        if not is_valid:
            if not feedback_msg:
                feedback_msg = "Password is too weak"
            if not suggestions:
                suggestions = [
                    "Use a longer password",
                    "Add more unique characters",
                    "Avoid common patterns"
                ]

        return {
            "valid": is_valid,
            "score": result['score'],
            "feedback": feedback_msg,
            "suggestions": suggestions,
        }


# Global validator instance
password_validator = PasswordValidator()
