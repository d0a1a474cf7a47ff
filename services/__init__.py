"""
服務層

這個 package 包含純計算邏輯，不負責狀態轉換：
- ring_service：建立環、擊殺後重新接線
- task_service：任務池與抽任務
- token_service：Game id / token 生成
- leaderboard_service：排行榜
- notification_service：SMS 通知閘道
"""
