"""Issue query filters for hosting service issue listing."""

from dataclasses import dataclass
from urllib.parse import parse_qsl, quote

PAGE_SIZE = 100


def escape(value: str) -> str:
    """Percent-encode everything except unreserved characters (RFC 3986)."""
    return quote(value, safe="")


@dataclass(frozen=True)
class IssueQueryFilter:
    """Selects the issues a tracker operation works on.

    Either a custom query string, used verbatim, or a milestone plus
    optional labels. A non-empty custom query wins over the structured
    fields.
    """

    milestone: str | None = None
    labels: str | None = None
    custom_query: str | None = None

    @classmethod
    def custom(cls, query: str) -> "IssueQueryFilter":
        return cls(custom_query=query)

    @classmethod
    def structured(cls, milestone: str, labels: str | None = None) -> "IssueQueryFilter":
        return cls(milestone=milestone, labels=labels)

    @property
    def is_custom(self) -> bool:
        return bool(self.custom_query)

    def to_query_string(self) -> str:
        """Render the filter as a query string.

        Returns:
            The custom query unchanged, or
            ``?per_page=100[&milestone=...][&labels=...]``

        Example:
            >>> IssueQueryFilter.structured("1.0 beta", "bug,ui").to_query_string()
            '?per_page=100&milestone=1.0%20beta&labels=bug%2Cui'
        """
        if self.custom_query:
            return self.custom_query

        query = f"?per_page={PAGE_SIZE}"
        if self.milestone:
            query += f"&milestone={escape(self.milestone)}"
        if self.labels:
            query += f"&labels={escape(self.labels)}"
        return query

    def query_params(self) -> list[tuple[str, str]]:
        """The query string as decoded key/value pairs."""
        return parse_qsl(self.to_query_string().lstrip("?"), keep_blank_values=True)
