"""
Game knowledge for the fishing bot.

Submodules:
    game_data: Static rod, boat, biome and fish tables.
    parser: Regex extraction of catches, cooldowns and profile fields from embeds.
    profile: ``ProfileState`` shared snapshot with the captcha flag.
"""
