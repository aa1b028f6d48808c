# core/template_engine.py
"""
Email template rendering for newsletters.

Newsletter HTML is sanitized before it reaches this module; the templates
here wrap it in an email layout, add the per-recipient unsubscribe link and
inline the layout CSS for mail clients that ignore <style> blocks.
"""

import logging
import urllib.parse

from jinja2 import Environment, StrictUndefined, select_autoescape
from jinja2.exceptions import TemplateError
from markupsafe import Markup
import premailer

logger = logging.getLogger(__name__)

NEWSLETTER_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{{ title }}</title>
<style>
  body { margin: 0; padding: 0; background-color: #f4f4f5; font-family: Arial, Helvetica, sans-serif; }
  .container { max-width: 600px; margin: 0 auto; padding: 24px; background-color: #ffffff; }
  .title { font-size: 24px; color: #111827; }
  .content { font-size: 16px; color: #374151; }
  .footer { margin-top: 32px; font-size: 12px; color: #6b7280; text-align: center; }
</style>
</head>
<body>
<div class="container">
  <h1 class="title">{{ title }}</h1>
  <div class="content">{{ content }}</div>
  <div class="footer">
    <p>You are receiving this email because you subscribed to our newsletter.</p>
    <p><a href="{{ unsubscribe_url }}">Unsubscribe</a></p>
  </div>
</div>
</body>
</html>
"""

WELCOME_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Welcome!</title>
<style>
  .container { max-width: 600px; margin: 0 auto; padding: 24px; font-family: Arial, Helvetica, sans-serif; }
  .footer { margin-top: 32px; font-size: 12px; color: #6b7280; }
</style>
</head>
<body>
<div class="container">
  <h1>Welcome!</h1>
  <p>Thank you for subscribing to our newsletter. You'll receive our latest updates and content directly in your inbox.</p>
  <p class="footer">If you no longer wish to receive these emails, you can <a href="{{ unsubscribe_url }}">unsubscribe</a> at any time.</p>
</div>
</body>
</html>
"""

WELCOME_SUBJECT = 'Welcome to our Newsletter!'
WELCOME_TEXT = (
    "Welcome!\n\n"
    "Thank you for subscribing to our newsletter. You'll receive our latest updates "
    "and content directly in your inbox.\n\n"
    "If you no longer wish to receive these emails, you can unsubscribe at any time:\n"
    "{unsubscribe_url}"
)


def build_unsubscribe_url(frontend_url: str, email: str) -> str:
    """Frontend unsubscribe link carrying the recipient address"""
    return f"{frontend_url.rstrip('/')}/unsubscribe?email={urllib.parse.quote(email, safe='')}"


class NewsletterEmailRenderer:
    """Renders newsletter and welcome emails from the built-in layouts"""

    def __init__(self, enable_css_inlining: bool = True):
        self.enable_css_inlining = enable_css_inlining
        self.env = Environment(
            autoescape=select_autoescape(['html', 'xml']),
            undefined=StrictUndefined,  # Fail on undefined variables
            trim_blocks=True,
            lstrip_blocks=True
        )
        self.newsletter_template = self.env.from_string(NEWSLETTER_TEMPLATE)
        self.welcome_template = self.env.from_string(WELCOME_TEMPLATE)

    def render_newsletter(self, title: str, sanitized_html: str, unsubscribe_url: str) -> str:
        """
        Render one recipient's newsletter HTML

        Args:
            title: Newsletter title, escaped on output
            sanitized_html: Body already passed through ContentSanitizer
            unsubscribe_url: Recipient-specific unsubscribe link
        """
        try:
            rendered = self.newsletter_template.render(
                title=title,
                content=Markup(sanitized_html),
                unsubscribe_url=unsubscribe_url,
            )
        except TemplateError as e:
            logger.error(f"Newsletter template rendering failed: {str(e)}")
            raise
        return self._inline_css(rendered) if self.enable_css_inlining else rendered

    def render_welcome(self, unsubscribe_url: str) -> str:
        rendered = self.welcome_template.render(unsubscribe_url=unsubscribe_url)
        return self._inline_css(rendered) if self.enable_css_inlining else rendered

    def render_welcome_text(self, unsubscribe_url: str) -> str:
        return WELCOME_TEXT.format(unsubscribe_url=unsubscribe_url)

    def _inline_css(self, html_content: str) -> str:
        """
        Inline CSS styles for better email client compatibility
        """
        try:
            p = premailer.Premailer(
                html_content,
                remove_classes=False,  # Keep classes for fallback
                keep_style_tags=True,
                strip_important=False,
                external_styles=None,  # Don't fetch external stylesheets
                cssutils_logging_level=logging.CRITICAL
            )
            return p.transform()
        except Exception as e:
            logger.warning(f"CSS inlining failed: {str(e)}")
            return html_content
