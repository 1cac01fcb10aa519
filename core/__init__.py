"""
核心業務邏輯層

這個 package 包含放置仲裁的核心，包括：
- GridStore：畫布的權威狀態與 compare-and-commit transaction
- PlacementArbiter：一個 identity 一格、一個座標一次的仲裁
- LiveFeed：把畫布快照推送給所有訂閱者
- Locks：並發控制工具
"""
