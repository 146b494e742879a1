"""
mail/templates.py -- Jinja2 rendering for transactional email bodies.

Templates live in mail/templates/. Autoescape is on for .html, so a display
name such as "<script>" is rendered as text, not markup.
"""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

_TEMPLATE_DIR = Path(__file__).parent / "templates"

EMAIL_VERIFICATION_SUBJECT = "Email Verification"
PASSWORD_RESET_SUBJECT = "Reset Password"


class EmailTemplates:
    """Renders the verification and password-reset messages.

    Usage:
        templates = EmailTemplates(company_name="Acme")
        html = templates.verification("Alice", "482913")
    """

    def __init__(self, company_name: str, template_dir: Path = _TEMPLATE_DIR) -> None:
        self.company_name = company_name
        self._env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html"]),
            undefined=StrictUndefined,
        )

    def render(self, template_name: str, **context) -> str:
        context.setdefault("company_name", self.company_name)
        return self._env.get_template(template_name).render(**context)

    def verification(self, user_name: str, otp_code: str, ttl_minutes: int = 5) -> str:
        return self.render("email_verification.html", user_name=user_name, otp_code=otp_code, ttl_minutes=ttl_minutes)

    def password_reset(self, user_name: str, otp_code: str, ttl_minutes: int = 5) -> str:
        return self.render("reset_password.html", user_name=user_name, otp_code=otp_code, ttl_minutes=ttl_minutes)
