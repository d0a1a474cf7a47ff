"""
API 層

只負責：解析請求 -> 呼叫 core Manager -> 把異常轉成 HTTP 狀態碼 -> 排程通知
- games：建立遊戲、查詢、加入
- admin：管理頁、開始遊戲、核准 / 駁回擊殺
- players：玩家頁、提交擊殺、確認死亡
"""
