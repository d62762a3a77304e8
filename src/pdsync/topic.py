"""Channel topic templates.

A template uses ``str.format`` field syntax, e.g. ``"On call: <@{Primary}>"``. It is
parsed once when the configuration is loaded and rendered on every run against a
mapping of sanitized schedule name -> Slack user ID.
"""

from __future__ import annotations

import re
import string
from typing import List, Mapping

from .errors import TemplateError

NOT_ALPHANUM_RE = re.compile(r"[^a-zA-Z0-9]+")


def sanitize_schedule_name(name: str) -> str:
    """Strip every non-alphanumeric character so the name can be used as a field."""
    return NOT_ALPHANUM_RE.sub("", name)


class TopicTemplate:
    def __init__(self, source: str) -> None:
        self.source = source
        self.fields = self._parse(source)

    @staticmethod
    def _parse(source: str) -> List[str]:
        fields: List[str] = []
        try:
            parsed = list(string.Formatter().parse(source))
        except ValueError as e:
            raise TemplateError(f"failed to parse template {source!r}: {e}") from e

        for _, field_name, _, _ in parsed:
            if field_name is None:
                continue
            if field_name == "" or field_name.isdigit():
                raise TemplateError(
                    f"failed to parse template {source!r}: positional fields are not supported, "
                    "reference schedules by name"
                )
            fields.append(field_name)
        return fields

    def render(self, values: Mapping[str, str]) -> str:
        try:
            return self.source.format_map(dict(values))
        except KeyError as e:
            raise TemplateError(f"template references unknown schedule {e.args[0]!r}") from e
        except (AttributeError, IndexError, ValueError, TypeError) as e:
            raise TemplateError(f"failed to render template: {e}") from e

    def __repr__(self) -> str:
        return f"TopicTemplate({self.source!r})"
