"""
Versioned prompt loader: reads prompts from briefings/prompts/{version}/{component}.yaml.
Use PROMPT_VERSION (default v1) to select version.
"""
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

# Base path: briefings/prompts/ (next to this file)
_PROMPTS_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class PromptTemplate:
    """System/user templates for one component plus optional model, max_tokens and temperature overrides."""

    name: str
    system: str
    user: str
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


class PromptLoader:
    """Loads and caches PromptTemplates; fills <<KEY>> placeholders.
    Why available: Keeps prompt wording in versioned YAML files so enrichment prompts change without code changes."""

    def __init__(self, version: str = "v1", root: Optional[Path] = None):
        self.version = version
        self.root = root or _PROMPTS_DIR
        self._cache: Dict[str, PromptTemplate] = {}
        self._lock = threading.Lock()

    def load(self, name: str) -> PromptTemplate:
        """Return the template for a component (e.g. company_summary). Raises FileNotFoundError or ValueError for a missing or incomplete file."""
        with self._lock:
            cached = self._cache.get(name)
        if cached is not None:
            return cached

        path = self.root / self.version / f"{name}.yaml"
        if not path.exists():
            raise FileNotFoundError(f"Prompt file not found: {path}")

        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        out: Dict[str, str] = {}
        for key in ("system", "user"):
            val = data.get(key)
            if val is None:
                raise ValueError(f"Component {name} has no '{key}' prompt in version {self.version}")
            out[key] = val.strip() if isinstance(val, str) else str(val).strip()

        template = PromptTemplate(
            name=name,
            system=out["system"],
            user=out["user"],
            model=data.get("model"),
            max_tokens=data.get("max_tokens"),
            temperature=data.get("temperature"),
        )
        with self._lock:
            self._cache[name] = template
        logger.debug("prompt_loaded", extra={"component": name, "version": self.version})
        return template

    @staticmethod
    def interpolate(template: str, variables: Mapping[str, str]) -> str:
        """Replace every <<KEY>> with its value; placeholders without a value are left unchanged."""
        result = template
        for key, value in variables.items():
            result = result.replace(f"<<{key}>>", value)
        return result

    def messages(self, name: str, variables: Mapping[str, str]) -> List[Dict[str, str]]:
        """Chat messages (system + user) for a component with placeholders filled."""
        t = self.load(name)
        return [
            {"role": "system", "content": self.interpolate(t.system, variables)},
            {"role": "user", "content": self.interpolate(t.user, variables)},
        ]
