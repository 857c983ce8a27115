"""YAML loading that keeps scalars JSON-native.

Attribute values are recorded in the JSON state file and compared against
the template on every plan, so whatever YAML yields must survive a JSON
round trip unchanged.
"""

from typing import Any

import yaml

TIMESTAMP_TAG = 'tag:yaml.org,2002:timestamp'


class NoDatesSafeLoader(yaml.SafeLoader):
    """SafeLoader that reads unquoted dates and times as plain strings."""


NoDatesSafeLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != TIMESTAMP_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def load_yaml(stream: Any) -> Any:
    """``yaml.safe_load`` without timestamp conversion."""
    return yaml.load(stream, Loader=NoDatesSafeLoader)
