# Detection rules for committed credentials
import re
from typing import Callable, Dict, Optional, Pattern


class PatternRule:
    """A detector: regex plus severity, description and an optional validator"""

    def __init__(
        self,
        regex: str,
        severity: str,
        description: str,
        validator: Optional[Callable[[str], bool]] = None,
        value_group: int = 0,
        flags: int = 0
    ):
        self.regex: Pattern = re.compile(regex, flags)
        self.severity = severity
        self.description = description
        self.validator = validator
        self.value_group = value_group

    def is_valid(self, value: str) -> bool:
        if self.validator is None:
            return True
        return self.validator(value)


def is_jwt_shaped(value: str) -> bool:
    """A JWT splits into exactly three non-empty dot-separated segments"""
    parts = value.split('.')
    return len(parts) == 3 and all(parts)


def is_not_degenerate(value: str) -> bool:
    """Reject values made of a single repeated character (xxxxxxxx, 00000000)"""
    return len(set(value)) > 1


API_KEY_PATTERNS: Dict[str, PatternRule] = {
    'stripe_secret': PatternRule(
        r'sk_live_[a-zA-Z0-9]{24,}',
        'high',
        'Stripe Secret Key (Live)'
    ),
    'stripe_test': PatternRule(
        r'sk_test_[a-zA-Z0-9]{24,}',
        'medium',
        'Stripe Secret Key (Test)'
    ),
    'stripe_publishable': PatternRule(
        r'pk_live_[a-zA-Z0-9]{24,}',
        'medium',
        'Stripe Publishable Key (Live)'
    ),
    'aws_access_key': PatternRule(
        r'AKIA[0-9A-Z]{16}',
        'high',
        'AWS Access Key ID'
    ),
    'openai': PatternRule(
        r'sk-[a-zA-Z0-9]{48}',
        'high',
        'OpenAI API Key'
    ),
    'github_token': PatternRule(
        r'ghp_[a-zA-Z0-9]{36}',
        'high',
        'GitHub Personal Access Token'
    ),
    'github_oauth': PatternRule(
        r'gho_[a-zA-Z0-9]{36}',
        'high',
        'GitHub OAuth Access Token'
    ),
    'sendgrid': PatternRule(
        r'SG\.[a-zA-Z0-9_-]{22}\.[a-zA-Z0-9_-]{43}',
        'high',
        'SendGrid API Key'
    ),
    'mailgun': PatternRule(
        r'key-[a-f0-9]{32}',
        'medium',
        'Mailgun API Key'
    ),
    'twilio_sid': PatternRule(
        r'AC[a-f0-9]{32}',
        'high',
        'Twilio Account SID'
    ),
    'twilio_auth': PatternRule(
        r'SK[a-f0-9]{32}',
        'high',
        'Twilio Auth Token'
    ),
    'slack_token': PatternRule(
        r'xox[baprs]-[0-9a-zA-Z]{10,48}',
        'high',
        'Slack Token'
    ),
    'google_api': PatternRule(
        r'AIza[0-9A-Za-z_-]{35}',
        'high',
        'Google API Key'
    ),
    'jwt_token': PatternRule(
        r'eyJ[a-zA-Z0-9_-]*\.[a-zA-Z0-9_-]*\.[a-zA-Z0-9_-]*',
        'medium',
        'JSON Web Token',
        validator=is_jwt_shaped
    ),
    'generic_secret': PatternRule(
        r'secret[_-]?key["\']?\s*[:=]\s*["\']([A-Za-z0-9/+_=-]{16,})["\']',
        'low',
        'Generic Secret Key Assignment',
        validator=is_not_degenerate,
        value_group=1,
        flags=re.IGNORECASE
    ),
}

# Lines containing any of these (case-insensitive) are treated as documentation
FALSE_POSITIVE_TOKENS = (
    'example',
    'placeholder',
    'dummy',
    'fake',
    'sample',
    'test_key',
    'your_key_here',
    'insert_key_here',
    'todo',
    'fixme',
)

COMMENT_PREFIXES = ('//', '#', '*', '<!--')
