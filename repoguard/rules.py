"""
Detection rules.

A rule is a compiled line pattern tagged with a category and a severity.
Matching iterates the rule collection generically; categories are gated per
file path (environment files are allowed to hold secrets, so the secrets
category is skipped for them, nothing else is).
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Mapping, Optional

from .models import CATEGORIES, SEVERITY_ORDER


@dataclass(frozen=True)
class Rule:
    id: str
    pattern: re.Pattern
    category: str
    severity: str
    message: str
    recommendation: str

    def __post_init__(self):
        if self.category not in CATEGORIES:
            raise ValueError(f"{self.id}: unknown category {self.category!r}")
        if self.severity not in SEVERITY_ORDER:
            raise ValueError(f"{self.id}: unknown severity {self.severity!r}")

    def to_dict(self) -> dict:
        return {
            "id": self.id, "category": self.category, "severity": self.severity,
            "pattern": self.pattern.pattern, "message": self.message,
            "recommendation": self.recommendation,
        }


def _rule(id: str, pattern: str, category: str, severity: str, message: str, recommendation: str) -> Rule:
    return Rule(id, re.compile(pattern), category, severity, message, recommendation)


# ─── Rule catalogue ──────────────────────────────────────────────────────────
DEFAULT_RULES: tuple[Rule, ...] = (
    # secrets
    _rule("SECRET-OPENAI-KEY", r"\bsk-(?:proj-)?[A-Za-z0-9_-]{20,}", "secrets", "high",
          "OpenAI-style API key committed to source",
          "Revoke the key and load it from an environment variable or secrets manager"),
    _rule("SECRET-AWS-ACCESS-KEY", r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b", "secrets", "high",
          "AWS access key ID in source",
          "Deactivate the key in IAM and use instance roles or a secrets manager"),
    _rule("SECRET-GITHUB-TOKEN", r"\bgh[pousr]_[A-Za-z0-9]{36,}\b", "secrets", "high",
          "GitHub token in source",
          "Revoke the token at github.com/settings/tokens and inject it at runtime"),
    _rule("SECRET-SLACK-TOKEN", r"\bxox[abposr]-[A-Za-z0-9-]{10,}", "secrets", "high",
          "Slack token in source", "Revoke the token and store it outside the repository"),
    _rule("SECRET-STRIPE-KEY", r"\b[rs]k_live_[A-Za-z0-9]{16,}", "secrets", "high",
          "Live Stripe key in source", "Roll the key in the Stripe dashboard and use env vars"),
    _rule("SECRET-PRIVATE-KEY", r"-----BEGIN (?:RSA |EC |DSA |OPENSSH |PGP )?PRIVATE KEY-----", "secrets", "high",
          "Private key material committed to source",
          "Remove the key from history and issue a new key pair"),
    _rule("SECRET-HARDCODED-PASSWORD",
          r"(?i)\b(?:password|passwd|pwd|secret)\s*[:=]\s*['\"][^'\"\s]{4,}['\"]", "secrets", "medium",
          "Hardcoded credential in source", "Use os.environ.get() or a secrets manager"),
    _rule("SECRET-URL-CREDENTIALS", r"\b[a-z][a-z0-9+.-]*://[^\s:/@'\"]+:[^\s@/'\"]+@[^\s'\"]+", "secrets", "medium",
          "Connection string with embedded credentials",
          "Move the credentials out of the URL into configuration"),
    _rule("SECRET-JWT", r"\beyJ[A-Za-z0-9_-]{10,}\.eyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}", "secrets", "medium",
          "JSON Web Token literal in source", "Tokens expire and leak identity; never commit them"),

    # pii
    _rule("PII-SSN", r"\b\d{3}-\d{2}-\d{4}\b", "pii", "high",
          "Possible US social security number", "Remove real personal data; use synthetic fixtures"),
    _rule("PII-CREDIT-CARD", r"\b(?:4\d{3}|5[1-5]\d{2}|3[47]\d{2}|6011)[- ]?\d{4}[- ]?\d{4}[- ]?\d{1,4}\b", "pii", "high",
          "Possible payment card number", "Remove card data; use the issuer's documented test numbers"),
    _rule("PII-EMAIL", r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", "pii", "low",
          "Email address in source", "Check that this is not a real customer or employee address"),
    _rule("PII-PHONE", r"(?<![\d-])(?:\+?1[-. ])?\(?\d{3}\)?[-. ]\d{3}[-. ]\d{4}(?![\d-])", "pii", "low",
          "Possible phone number", "Replace real phone numbers with placeholders"),

    # insecure constructs
    _rule("INSECURE-EVAL", r"\beval\s*\(", "insecure", "high",
          "eval() executes arbitrary code", "Remove eval(); parse data explicitly (json.loads, ast.literal_eval)"),
    _rule("INSECURE-EXEC", r"(?<![.\w])exec\s*\(", "insecure", "medium",
          "exec() executes arbitrary code", "Replace dynamic execution with explicit dispatch"),
    _rule("INSECURE-SHELL", r"\bos\.system\s*\(|\bsubprocess\.\w+\(.*shell\s*=\s*True", "insecure", "high",
          "Shell command execution — injection risk", "Use subprocess.run([...], shell=False)"),
    _rule("INSECURE-SQL-INTERPOLATION",
          r"\bexecute\s*\(\s*f['\"]|\bexecute\s*\(\s*['\"][^'\"]*['\"]\s*(?:\+|%)", "insecure", "high",
          "SQL built with string interpolation", "Use parameterized queries: cursor.execute('...', (val,))"),
    _rule("INSECURE-DESERIALIZE", r"\bpickle\.loads?\s*\(", "insecure", "high",
          "pickle.load() on untrusted data allows code execution", "Use JSON or another safe format"),
    _rule("INSECURE-YAML-LOAD", r"\byaml\.load\s*\((?!.*Loader)", "insecure", "medium",
          "yaml.load() without a Loader is unsafe", "Use yaml.safe_load()"),
    _rule("INSECURE-TLS-VERIFY", r"\bverify\s*=\s*False\b|\brejectUnauthorized\s*:\s*false\b", "insecure", "high",
          "TLS certificate verification disabled", "Keep verification on; pin a CA bundle if needed"),
    _rule("INSECURE-WEAK-HASH", r"\bhashlib\.(?:md5|sha1)\s*\(|\bcreateHash\(\s*['\"](?:md5|sha1)['\"]", "insecure", "medium",
          "MD5/SHA1 are broken for security use", "Use SHA-256 or a password hash (bcrypt, argon2)"),
    _rule("INSECURE-DEBUG", r"(?i)\bdebug\s*=\s*true\b", "insecure", "medium",
          "Debug mode exposes internals", "Drive debug from configuration and default it off"),
    _rule("INSECURE-INNERHTML", r"\.innerHTML\s*=|\bdangerouslySetInnerHTML\b", "insecure", "medium",
          "Raw HTML injection — XSS risk", "Use textContent or sanitize with DOMPurify"),
    _rule("INSECURE-TOKEN-LOCALSTORAGE", r"\blocalStorage\.(?:set|get)Item\(.*[Tt]oken", "insecure", "medium",
          "Tokens in localStorage are readable by any XSS", "Use httpOnly Secure cookies instead"),
    _rule("INSECURE-WEAK-RANDOM", r"\brandom\.(?:random|randint)\s*\(|\bMath\.random\s*\(", "insecure", "low",
          "Non-cryptographic random generator", "Use secrets.token_hex() / crypto.getRandomValues() for tokens"),
    _rule("INSECURE-PLAIN-HTTP", r"\bhttp://(?!localhost\b|127\.0\.0\.1\b|0\.0\.0\.0\b)[\w.-]+", "insecure", "low",
          "Plain HTTP endpoint", "Use https:// for anything leaving the host"),

    # review markers
    _rule("REVIEW-MARKER", r"\b(?:TODO|FIXME|HACK|XXX)\b", "review", "low",
          "Unresolved review marker", "Resolve the note or track it in the issue tracker"),
    _rule("REVIEW-SUPPRESSION", r"#\s*nosec\b|//\s*eslint-disable\b|#\s*noqa:\s*S\d+", "review", "low",
          "Security check suppressed inline", "Confirm the suppression is still justified"),
)


# ─── Category gates ──────────────────────────────────────────────────────────
def is_env_file(path: str) -> bool:
    """True for environment / secret-storage files (.env, .env.local, prod.env, .envrc)."""
    name = posixpath.basename(path).lower()
    return name in (".env", ".envrc") or name.startswith(".env.") or name.endswith(".env")


DEFAULT_EXCLUSIONS: Mapping[str, tuple[Callable[[str], bool], ...]] = {
    "secrets": (is_env_file,),
}


@dataclass(frozen=True)
class RuleSet:
    rules: tuple[Rule, ...] = DEFAULT_RULES
    exclusions: Mapping[str, tuple[Callable[[str], bool], ...]] = field(
        default_factory=lambda: dict(DEFAULT_EXCLUSIONS)
    )

    def __post_init__(self):
        ids = [rule.id for rule in self.rules]
        duplicates = {rid for rid in ids if ids.count(rid) > 1}
        if duplicates:
            raise ValueError(f"Duplicate rule ids: {sorted(duplicates)}")

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def get(self, rule_id: str) -> Optional[Rule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def excluded_categories(self, path: str) -> frozenset[str]:
        return frozenset(
            category for category, predicates in self.exclusions.items()
            if any(predicate(path) for predicate in predicates)
        )

    def active_rules(self, path: str = "") -> tuple[Rule, ...]:
        skipped = self.excluded_categories(path) if path else frozenset()
        return tuple(rule for rule in self.rules if rule.category not in skipped)

    def iter_matches(self, text: str, rules: Iterable[Rule]) -> Iterator[tuple[Rule, re.Match]]:
        for rule in rules:
            for match in rule.pattern.finditer(text):
                yield rule, match

    def evaluate_line(self, text: str, path: str = "") -> list[tuple[str, str]]:
        """Return (rule_id, matched_text) for every match of every active rule."""
        return [(rule.id, match.group(0)) for rule, match in self.iter_matches(text, self.active_rules(path))]


DEFAULT_RULESET = RuleSet()
