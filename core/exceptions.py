"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

分類：
- NotFound：未知的識別碼 → 404
- NotAuthorized：token / admin token 對不上 → 403
- InvalidState：目前的遊戲或請求狀態不允許這個操作 → 400
- InsufficientPlayers：開始遊戲時玩家少於 2 人 → 400

所有異常都在任何寫入之前拋出，呼叫端可以直接重試或回報錯誤
"""


class AssassinGameException(Exception):
    """所有遊戲異常的基類"""
    pass


# ============ NotFound ============

class NotFound(AssassinGameException):
    """識別碼不存在"""
    pass


class GameNotFound(NotFound):
    """遊戲不存在"""
    def __init__(self, game_id):
        self.game_id = game_id
        super().__init__(f"Game {game_id} not found")


class PlayerNotFound(NotFound):
    """玩家不存在"""
    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__(f"Player {player_id} not found")


class KillRequestNotFound(NotFound):
    """擊殺請求不存在"""
    def __init__(self, request_id):
        self.request_id = request_id
        super().__init__(f"Kill request {request_id} not found")


# ============ 權限 ============

class NotAuthorized(AssassinGameException):
    """呼叫者的 token 和操作對象不符"""
    pass


# ============ 狀態 ============

class InvalidState(AssassinGameException):
    """非法的狀態轉換，或目前狀態不允許此操作"""
    pass


class GameNotActive(InvalidState):
    """遊戲不在 active 狀態"""
    pass


class GameNotAcceptingPlayers(InvalidState):
    """遊戲已經開始，不接受新玩家"""
    pass


class PlayerEliminated(InvalidState):
    """玩家已經出局，不能再下任何指令"""
    pass


# ============ 開始遊戲 ============

class InsufficientPlayers(AssassinGameException):
    """玩家數量不足（至少需要 2 人）"""
    pass
