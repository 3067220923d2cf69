"""GitHub data models.

Pydantic models for the parts of the GitHub REST API the dispatcher
consumes: assigned issues and the rate limit resource.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Issue(BaseModel):
    """A GitHub issue assigned to the operator.

    Issues are immutable inputs to the pipeline. ``id`` is the stable
    GitHub identifier used for de-duplication and state records;
    ``number`` is the user-facing ``#123``.

    Attributes:
        id: Stable GitHub issue id.
        number: Issue number within the repository.
        title: Issue title.
        body: Issue description, if any.
        html_url: Browser URL of the issue.
        assignee: Login of the assignee, if any.
        state: Issue state ("open" or "closed").
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Stable GitHub issue id")
    number: int = Field(..., gt=0, description="Issue number")
    title: str = Field(..., description="Issue title")
    body: Optional[str] = Field(default=None, description="Issue description")
    html_url: str = Field(default="", description="Browser URL of the issue")
    assignee: Optional[str] = Field(
        default=None, description="Login of the assignee"
    )
    state: str = Field(default="open", description="Issue state")

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "Issue":
        """Build an Issue from a GitHub REST API issue payload."""
        assignee = payload.get("assignee") or {}
        return cls(
            id=payload["id"],
            number=payload["number"],
            title=payload.get("title") or "",
            body=payload.get("body"),
            html_url=payload.get("html_url") or "",
            assignee=assignee.get("login"),
            state=payload.get("state") or "open",
        )


class RateLimitStatus(BaseModel):
    """Core REST API quota as reported by ``GET /rate_limit``.

    Attributes:
        limit: Requests allowed per window.
        remaining: Requests remaining in the current window.
        reset_at: When the window resets (UTC).
    """

    limit: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)
    reset_at: datetime

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "RateLimitStatus":
        core = payload.get("resources", {}).get("core") or payload["rate"]
        return cls(
            limit=core["limit"],
            remaining=core["remaining"],
            reset_at=datetime.fromtimestamp(core["reset"], tz=timezone.utc),
        )

    def seconds_until_reset(self) -> float:
        delta = self.reset_at - datetime.now(timezone.utc)
        return max(0.0, delta.total_seconds())
