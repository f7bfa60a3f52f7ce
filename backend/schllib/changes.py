"""Field-level diff between two versions of a record."""
import json
from typing import Any, Dict, List


def _key(item: Any) -> str:
    return json.dumps(item, sort_keys=True, default=str)


def get_object_changes(old: Dict[str, Any], new: Dict[str, Any]) -> List[Dict[str, Any]]:
    """List the fields of *old* whose value differs in *new*.

    List fields carry ``arrayChanges`` with the added and removed items;
    items are compared by their JSON form.
    """
    changes: List[Dict[str, Any]] = []
    for field, old_value in old.items():
        new_value = new.get(field)
        if isinstance(old_value, list) and isinstance(new_value, list):
            old_keys = {_key(i) for i in old_value}
            new_keys = {_key(i) for i in new_value}
            added = [i for i in new_value if _key(i) not in old_keys]
            removed = [i for i in old_value if _key(i) not in new_keys]
            if added or removed:
                changes.append({
                    'field': field,
                    'oldValue': old_value,
                    'newValue': new_value,
                    'arrayChanges': {'added': added, 'removed': removed},
                })
        elif old_value != new_value:
            changes.append({'field': field, 'oldValue': old_value, 'newValue': new_value})
    return changes


def changes_to_patch(changes: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Fold a change list back into a ``{field: newValue}`` patch."""
    return {c['field']: c.get('newValue') for c in changes if c.get('field')}
