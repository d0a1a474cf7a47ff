"""
識別碼服務：生成 Game id、Admin token、Player token

純計算邏輯，不涉及狀態轉換

token 同時也是唯一的驗證方式，所以一律使用 secrets（密碼學強度亂數），
不可以用 random
"""
import secrets

from sqlalchemy.orm import Session

from models import Game, Player


def generate_game_id() -> str:
    """
    生成 8 位十六進位的 Game id（例如：a3f09c1e）

    注意：
    - 不檢查唯一性（由呼叫者負責）
    - Game id 只用來加入遊戲，不是驗證用的憑證
    """
    return secrets.token_hex(4)


def generate_token() -> str:
    """生成 32 位十六進位的不可猜測 token（128 bits）"""
    return secrets.token_hex(16)


def generate_unique_game_id(db: Session) -> str:
    game_id = generate_game_id()
    while db.query(Game).filter(Game.id == game_id).first():
        game_id = generate_game_id()
    return game_id


def generate_unique_player_token(db: Session) -> str:
    token = generate_token()
    while db.query(Player).filter(Player.token == token).first():
        token = generate_token()
    return token
