"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理 Game 和 KillRequest 的狀態轉換
- Manager：管理 Game 生命週期和擊殺請求的結算
- Locks：並發控制工具
"""
