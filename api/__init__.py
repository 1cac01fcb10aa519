"""
API 層

- pixels：放置一格、查詢畫布
- participants：匿名參與者的註冊與狀態
- presence：線上人數心跳
- websocket：畫布狀態即時推送
"""
