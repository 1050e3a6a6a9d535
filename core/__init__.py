"""Core domain modules.

- market_data: venue clients, symbol normalization, price aggregation, live feeds
- indicators: RSI, EMA and ATR over candle series
- scanner: bounded-concurrency scan engine, RSI scanner, rules and screeners
- backtest: EMA crossover backtest and performance metrics
- alerts: alert state machine, checker and notifiers
- scheduler: periodic job runner and the market jobs it drives
- cache: short-TTL key/value store (in-memory or Redis)
- ratelimit: venue quota tracking and token bucket pacing
"""
