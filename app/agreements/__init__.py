"""
Agreements app for milestone escrow.

This app owns the agreement and milestone escrow lifecycle:
- Money value type and currency-safe arithmetic
- Agreement and Milestone models with django-fsm state machines
- Append-only escrow ledger of fund movements
- Aggregates derived from the ledger (released value, progress)
- LifecycleService, the single entry point for callers

Related apps:
    - core: BaseModel, UUIDPrimaryKeyMixin, ServiceResult, base exceptions

Usage:
    from agreements.services import LifecycleService
    from agreements.types import CallerIdentity

    owner = CallerIdentity(user_id="user-1", display_name="Ada")
    result = LifecycleService.send(owner, agreement_id)
    if result.success:
        snapshot = result.data.agreement
"""
