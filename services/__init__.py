"""
服務層

這個 package 包含不屬於放置核心的邏輯：
- GridViewService：把快照投影成前端的畫布視圖（totalPlaced、揭曉門檻）
- PresenceService：線上人數的心跳登記（與放置規則無關）
"""
