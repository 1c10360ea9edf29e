"""
Stock modules: orchestration services over the stock kernel.

Each module owns its transaction boundary (``unit_of_work``) and composes
kernel services; none of them writes ledger rows directly.

    inventory   -- adjust / receive / transfer / recompute
    purchasing  -- purchase order lifecycle and reorder drafting
    counting    -- stock counts applied as adjustments
    reporting   -- stockouts, slow movers, shrinkage, reorder suggestions
"""
