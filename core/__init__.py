"""
Core module for Autofish.

This package contains the orchestration, pacing, optimisation, configuration,
persistence and monitoring components that drive the fishing bot.

Submodules:
    config: Application settings (``BotSettings``) via Pydantic.
    orchestrator: ``BotOrchestrator`` cycle driver and ``BotState`` machine.
    cooldown: ``CooldownEstimator`` adaptive pacing of the primary action.
    optimizer: ``ActionOptimizer`` upgrade/travel ranking by payback time.
    scheduler: ``TaskScheduler`` min-heap of maintenance tasks.
    storage: SQLite-backed catch history and learned biome statistics.
    monitoring: ``BotStatus`` counters and Rich status rendering.
    errors: Exception hierarchy and error classification.
    logging_setup: Compressed rotating file + safe console logging.
    utils: Corruption-safe JSON read/write helpers.
"""
