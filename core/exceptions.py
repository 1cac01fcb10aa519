"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

每個「拒絕放置」的異常都帶有穩定的 reason 字串，前端依此顯示對應訊息
"""


class PixelRevealException(Exception):
    """所有業務異常的基類"""
    pass


# ============ 放置請求被拒絕 ============

class PlacementRejected(PixelRevealException):
    """PlaceCell 被拒絕（reason 會原樣回傳給呼叫者）"""
    reason = "Rejected"
    default_message = "Placement rejected."

    def __init__(self, message=None):
        super().__init__(message or self.default_message)


class InvalidRequest(PlacementRejected):
    """輸入格式錯誤（座標超出範圍、顏色或 identity 為空）"""
    reason = "InvalidRequest"
    default_message = "Invalid input data."


class AlreadyPlaced(PlacementRejected):
    """這個 identity 已經放置過了（終態，不重試）"""
    reason = "AlreadyPlaced"
    default_message = "You have already placed a pixel."

    def __init__(self, identity=None):
        self.identity = identity
        super().__init__()


class CellTaken(PlacementRejected):
    """這個座標已經被佔用（終態，請換一格）"""
    reason = "CellTaken"
    default_message = "This pixel is already placed."

    def __init__(self, x=None, y=None):
        self.x = x
        self.y = y
        super().__init__()


class Busy(PlacementRejected):
    """衝突重試次數用盡，呼叫者稍後可以再試"""
    reason = "Busy"
    default_message = "The grid is busy, please try again."


# ============ GridStore 相關異常 ============

class GridStoreError(PixelRevealException):
    """GridStore 異常的基類"""
    pass


class StoreUnavailable(GridStoreError):
    """底層儲存無法連線，或在等待上限內取不到 transaction"""
    reason = "StoreUnavailable"


class Conflict(GridStoreError):
    """commit 時發現讀取的資料已被其他 transaction 修改（內部使用，由 Arbiter 重試）"""
    pass


class DuplicateStagedWrite(GridStoreError):
    """同一個 transaction 對同一座標 stage 了兩次寫入"""
    def __init__(self, x, y):
        self.x = x
        self.y = y
        super().__init__(f"Cell ({x}, {y}) already staged in this transaction")


class TransactionClosed(GridStoreError):
    """transaction 已經 commit 或 abort，不能再使用"""
    pass
