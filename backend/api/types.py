"""Common type aliases for the SCHL portal API."""
from typing import Any, Union

# A single stored document (field_name -> value)
Document = dict[str, Any]

# Domain record aliases
ClientRecord = dict[str, Any]
OrderRecord = dict[str, Any]
ShiftTemplateRecord = dict[str, Any]
ShiftOverrideRecord = dict[str, Any]
TicketRecord = dict[str, Any]
ApprovalRecord = dict[str, Any]

# List aliases
ClientList = list[ClientRecord]
OrderList = list[OrderRecord]
TicketList = list[TicketRecord]

# Search endpoints answer either {pagination, items} or a plain list
SearchResult = Union[dict[str, Any], list[Document]]
