"""Manual status override protection."""

from __future__ import annotations

from installhub.importer.profile import PartnerImportConfig
from installhub.models import OrderStatusEnhanced


def status_update_allowed(
    manual_status_override: bool,
    new_status: OrderStatusEnhanced | None,
    config: PartnerImportConfig,
) -> bool:
    """
    Decide whether an import may write ``new_status`` to an order.

    Orders without a manual override always accept the new status. Orders with
    one accept it only when the profile's override rule for that status is
    explicitly ``True``.
    """

    if new_status is None:
        return False
    if not manual_status_override:
        return True
    return config.override_allows(new_status)
