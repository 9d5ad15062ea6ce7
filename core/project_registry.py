"""Project Registry - Single Authority for routing vocabulary

Mirrors the LocationConfig/SettingsConfig pattern.

RESPONSIBILITY:
- Load config/registry.yaml (projects, intents, companies, repo aliases)
- Answer lookups: project by capability/type, canonical repo/company names

DOES NOT:
- Score messages (classifier_rules' job)
- Track conversation state (ContextResolver's job)
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, List


class ProjectRegistry:
    """Routing vocabulary loaded from YAML.

    Usage:
        registry = ProjectRegistry.get()
        project = registry.find_project_by_capability("receipts")
    """

    _instance: Optional["ProjectRegistry"] = None

    def __init__(self, config_path: Optional[Path] = None, data: Optional[Dict[str, Any]] = None):
        if config_path is None:
            config_path = Path(__file__).parent.parent / "config" / "registry.yaml"
        self.config_path = Path(config_path)
        if data is not None:
            self._data = data
        else:
            self._data = self._load()

        logging.info(
            f"ProjectRegistry loaded: {len(self.projects)} projects, "
            f"{len(self.intents)} intents, {len(self.companies)} companies"
        )

    @classmethod
    def get(cls) -> "ProjectRegistry":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def _load(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            logging.warning(f"No registry.yaml found at {self.config_path}, routing vocabulary is empty")
            return {}
        try:
            import yaml
            with open(self.config_path, encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except Exception as e:
            logging.warning(f"Failed to load registry.yaml: {e}, routing vocabulary is empty")
            return {}

    @property
    def projects(self) -> Dict[str, Dict[str, Any]]:
        return self._data.get("projects") or {}

    @property
    def intents(self) -> Dict[str, Dict[str, Any]]:
        return self._data.get("intents") or {}

    @property
    def companies(self) -> Dict[str, Dict[str, Any]]:
        return self._data.get("companies") or {}

    @property
    def repo_aliases(self) -> Dict[str, str]:
        """Lower-case alias -> canonical repo name."""
        return {str(k).lower(): v for k, v in (self._data.get("repos") or {}).items()}

    @property
    def company_aliases(self) -> Dict[str, str]:
        """Lower-case company code -> canonical (upper-case) code."""
        return {code.lower(): code for code in self.companies}

    @property
    def company_default_project(self) -> Optional[str]:
        return self._data.get("company_default_project")

    def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        return self.projects.get(project_id)

    def get_action_for_intent(self, intent: str) -> Optional[str]:
        config = self.intents.get(intent)
        return config.get("action") if config else None

    def find_project_by_capability(self, capability: str) -> Optional[str]:
        for project_id, project in self.projects.items():
            if capability in (project.get("capabilities") or []):
                return project_id
        return None

    def find_project_by_type(self, project_type: str) -> Optional[str]:
        """Highest-priority project of project_type ('all' matches every project)."""
        candidates = [
            (project.get("priority", 99), project_id)
            for project_id, project in self.projects.items()
            if project_type == "all" or project.get("type") == project_type
        ]
        if not candidates:
            return None
        return sorted(candidates)[0][1]

    def known_entities(self) -> List[str]:
        """Canonical repo names and company codes, used for cross-segment references."""
        names = list(dict.fromkeys(self.repo_aliases.values()))
        return names + list(self.companies.keys())
