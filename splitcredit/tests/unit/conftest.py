"""
Unit-test fixtures.

Some unit tests build ORM instances without a database. Importing every
model here registers all string relationship targets before the mappers
are configured, whatever order the test modules run in.
"""

from splitcredit.app.models import (  # noqa: F401
    activity,
    credit_history,
    credit_state,
    expense,
    group,
    membership,
    pending_member,
    settlement,
    split,
    user,
)
