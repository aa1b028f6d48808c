# core/content_sanitizer.py
"""
Newsletter content sanitization.

Newsletter bodies are admin-authored HTML. Before they are embedded in an
email they are reduced to an allow-list of tags, attributes, CSS properties
and URL schemes, and a plain-text alternative is derived from the result.
"""

import logging
import re
import textwrap
from dataclasses import dataclass

import bleach
from bleach.css_sanitizer import CSSSanitizer
from bs4 import BeautifulSoup
from markupsafe import escape

logger = logging.getLogger(__name__)

TEXT_WRAP_WIDTH = 100

ALLOWED_TAGS = [
    'h1', 'h2', 'h3', 'h4', 'h5', 'h6',
    'p', 'blockquote', 'a', 'ul', 'ol', 'li',
    'b', 'i', 'strong', 'em', 'u', 's',
    'img', 'br', 'span', 'div', 'hr', 'code', 'pre',
    'table', 'thead', 'tbody', 'tfoot', 'tr', 'th', 'td', 'caption',
]

ALLOWED_ATTRIBUTES = {
    '*': ['style', 'class'],
    'a': ['href', 'name', 'target', 'rel'],
    'img': ['src', 'alt', 'width', 'height', 'style'],
}

ALLOWED_CSS_PROPERTIES = [
    'color', 'background-color', 'text-align',
    'font-weight', 'font-size', 'font-family',
    'width', 'height', 'border', 'margin', 'padding', 'display',
]

ALLOWED_PROTOCOLS = ['http', 'https', 'data']

# Dropped together with their contents; bleach alone would keep the text
REMOVED_ELEMENTS = ['script', 'style']

_TAG = re.compile(r'<[^<]+?>')


@dataclass
class SanitizedContent:
    html: str
    text: str


class ContentSanitizer:
    """Allow-list HTML sanitizer with plain-text conversion"""

    def __init__(self, wrap_width: int = TEXT_WRAP_WIDTH):
        self.wrap_width = wrap_width
        self.css_sanitizer = CSSSanitizer(
            allowed_css_properties=ALLOWED_CSS_PROPERTIES,
            allowed_svg_properties=[],
        )
        self.html_cleaner = bleach.Cleaner(
            tags=ALLOWED_TAGS,
            attributes=ALLOWED_ATTRIBUTES,
            protocols=ALLOWED_PROTOCOLS,
            css_sanitizer=self.css_sanitizer,
            strip=True,  # Strip disallowed tags instead of escaping
            strip_comments=True
        )

    def sanitize(self, content: str) -> SanitizedContent:
        """
        Sanitize HTML and derive its plain-text variant.

        Never raises: if parsing fails the input is treated as plain text.
        """
        content = content or ''
        try:
            clean_html = self.clean_html(content)
        except Exception as e:
            logger.warning(f"HTML sanitization failed, falling back to plain text: {str(e)}")
            return SanitizedContent(
                html=str(escape(content)),
                text=self._wrap(self._strip_tags(content)),
            )
        return SanitizedContent(html=clean_html, text=self.html_to_text(clean_html))

    def clean_html(self, content: str) -> str:
        soup = BeautifulSoup(content, 'html.parser')
        for element in soup.find_all(REMOVED_ELEMENTS):
            element.decompose()
        return self.html_cleaner.clean(str(soup))

    def html_to_text(self, html_content: str) -> str:
        """
        Convert sanitized HTML to wrapped plain text for email
        """
        if not html_content:
            return ""

        try:
            soup = BeautifulSoup(html_content, 'html.parser')

            for br in soup.find_all('br'):
                br.replace_with('\n')

            for block in soup.find_all(['p', 'div', 'blockquote', 'pre', 'table']):
                block.insert_after('\n\n')

            for header in soup.find_all(['h1', 'h2', 'h3', 'h4', 'h5', 'h6']):
                header.insert_before('\n')
                header.insert_after('\n\n')

            for li in soup.find_all('li'):
                li.insert_before('- ')
                li.insert_after('\n')

            for row in soup.find_all('tr'):
                row.insert_after('\n')

            for link in soup.find_all('a', href=True):
                link_text = link.get_text()
                href = link['href']
                if href != link_text:
                    link.replace_with(f"{link_text} ({href})")

            text = soup.get_text()
        except Exception as e:
            logger.warning(f"HTML to text conversion failed: {str(e)}")
            text = self._strip_tags(html_content)

        text = re.sub(r'[ \t]+', ' ', text)
        text = re.sub(r' *\n *', '\n', text)
        text = re.sub(r'\n{3,}', '\n\n', text)
        return self._wrap(text.strip())

    def _wrap(self, text: str) -> str:
        lines = []
        for line in text.split('\n'):
            if len(line) <= self.wrap_width:
                lines.append(line)
            else:
                lines.append(textwrap.fill(line, width=self.wrap_width,
                                           break_long_words=False, break_on_hyphens=False))
        return '\n'.join(lines)

    @staticmethod
    def _strip_tags(content: str) -> str:
        text = _TAG.sub('', content)
        return re.sub(r'[ \t]+', ' ', text).strip()
