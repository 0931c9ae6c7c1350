"""Render the chooser HTML pages and the account chooser bootstrap script."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from core.logging import get_logger
from core.settings import ChooserSettings
from services.account_store import Account

logger = get_logger(__name__)

REPO_ROOT = Path(__file__).resolve().parent.parent
TEMPLATE_DIR = REPO_ROOT / "templates" / "chooser"

COLORS = ("red", "orange", "yellow", "green", "blue", "indigo", "violet")

_PAGE_ENV: Optional[Environment] = None


def _get_page_env() -> Environment:
    global _PAGE_ENV
    if _PAGE_ENV is None:
        _PAGE_ENV = Environment(
            loader=FileSystemLoader(TEMPLATE_DIR),
            autoescape=select_autoescape(["html", "xml", "jinja"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
    return _PAGE_ENV


class PageRenderer:
    def __init__(self, settings: ChooserSettings):
        self.settings = settings

    def _ac_config(self, store_account: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        config: Dict[str, Any] = {"uiConfig": {"title": f"Log in to {self.settings.app_title}"}}
        if store_account:
            config["storeAccount"] = dict(store_account)
        return config

    def _render(self, name: str, *, title: str, heading: str, with_chooser: bool = True, **extra: Any) -> str:
        context: MutableMapping[str, Any] = {
            "title": title,
            "heading": heading,
            "ac_script": self.settings.account_chooser_script,
            "ac_config": extra.pop("ac_config", None) or (self._ac_config() if with_chooser else None),
        }
        context.update(extra)
        try:
            template = _get_page_env().get_template(name)
        except TemplateNotFound as exc:  # pragma: no cover - deployment guard
            raise RuntimeError(f"Chooser template '{name}' not found.") from exc
        return template.render(**context)

    def login(self, providers: Iterable[Any]) -> str:
        return self._render(
            "login.html.jinja",
            title="Login",
            heading=f"Welcome to {self.settings.app_title}!",
            providers=[provider for provider in providers if provider.supports_redirect],
        )

    def register(self) -> str:
        return self._render("register.html.jinja", title="First-time Login", heading=f"Welcome to {self.settings.app_title}!")

    def duplicate(self) -> str:
        return self._render(
            "dupe.html.jinja",
            title="Duplicate account!",
            heading="Sorry, that email is taken.",
            with_chooser=False,
        )

    def auth_failed(self, problem: str) -> str:
        return self._render(
            "auth_failed.html.jinja",
            title="Authorization failed",
            heading="Authorization failed",
            with_chooser=False,
            problem=problem,
        )

    def bootstrap(self, fields: Mapping[str, str]) -> str:
        """Page whose ac.js config stores the account's non-empty public fields."""
        return self._render(
            "bootstrap.html.jinja",
            title="Update ac.js",
            heading="Updating AccountChooser",
            ac_config=self._ac_config(fields),
        )

    def color_chooser(self, account: Account) -> str:
        return self._render(
            "color.html.jinja",
            title=self.settings.app_title,
            heading=f"{self.settings.app_title}: pick your favorite",
            with_chooser=False,
            account=account,
            colors=COLORS,
        )


__all__ = ["COLORS", "PageRenderer"]
