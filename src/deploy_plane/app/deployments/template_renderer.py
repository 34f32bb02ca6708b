"""Landing-page content rendering.

User-supplied fields are HTML-escaped before they are substituted into the
static template, and also Markdown-escaped for the README. The rendered
files are committed to a public repository and served as-is, so no raw
input may reach the output.
"""

from __future__ import annotations

from dataclasses import dataclass
from importlib import resources
from pathlib import Path

_HTML_ESCAPES = {
    '&': '&amp;',
    '<': '&lt;',
    '>': '&gt;',
    '"': '&quot;',
    "'": '&#039;',
    '/': '&#x2F;',
}

_MARKDOWN_SPECIALS = frozenset('\\`*_[](){}#!|')

PLACEHOLDERS = {
    'organization_name': '{{ORGANIZATION_NAME}}',
    'signer_name': '{{SIGNER_NAME}}',
    'signer_email': '{{SIGNER_EMAIL}}',
}


@dataclass(frozen=True, slots=True)
class RepoFile:
    """A file committed to the source repository."""

    path: str
    content: str


def escape_html(text: str) -> str:
    # ``&`` is handled in the same pass, so entities are never double-escaped.
    return ''.join(_HTML_ESCAPES.get(ch, ch) for ch in text)


def escape_markdown(text: str) -> str:
    """Escape a value for README.md, which is rendered as Markdown and HTML."""
    flat = ' '.join(text.splitlines())
    backslashed = ''.join('\\' + ch if ch in _MARKDOWN_SPECIALS else ch for ch in flat)
    return escape_html(backslashed)


def load_template(path: str | Path | None = None) -> str:
    """Read the landing template, defaulting to the bundled one."""
    if path:
        return Path(path).read_text(encoding='utf-8')
    return (
        resources.files('deploy_plane.app.templates')
        .joinpath('landing', 'index.html')
        .read_text(encoding='utf-8')
    )


def render_template(
    template: str,
    *,
    organization_name: str,
    signer_name: str,
    signer_email: str,
) -> str:
    """Replace every placeholder with the escaped value."""
    values = {
        'organization_name': organization_name,
        'signer_name': signer_name,
        'signer_email': signer_email,
    }
    rendered = template
    for key, placeholder in PLACEHOLDERS.items():
        rendered = rendered.replace(placeholder, escape_html(values[key]))
    return rendered


def render_readme(
    *,
    organization_name: str,
    signer_name: str,
    signer_email: str,
) -> str:
    organization_name = escape_markdown(organization_name)
    signer_name = escape_markdown(signer_name)
    signer_email = escape_markdown(signer_email)
    return (
        f'# {organization_name}\n'
        f'\n'
        f'Landing page for {organization_name}.\n'
        f'\n'
        f'**Contact:** {signer_name} ({signer_email})\n'
        f'\n'
        f'---\n'
        f'\n'
        f'This landing page was automatically generated by deploy-plane.\n'
    )


def render_landing_files(
    *,
    organization_name: str,
    signer_name: str,
    signer_email: str,
    template: str | None = None,
) -> list[RepoFile]:
    """Build the initial commit: ``index.html`` plus ``README.md``."""
    source = template if template is not None else load_template()
    index = render_template(
        source,
        organization_name=organization_name,
        signer_name=signer_name,
        signer_email=signer_email,
    )
    readme = render_readme(
        organization_name=organization_name,
        signer_name=signer_name,
        signer_email=signer_email,
    )
    return [
        RepoFile(path='index.html', content=index),
        RepoFile(path='README.md', content=readme),
    ]
