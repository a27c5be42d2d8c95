from pydantic import BaseModel
from typing import Optional

class SSLInfo(BaseModel):
    """SSL证书信息"""
    cert_path: str = ""
    key_path: str = ""

class SSLResponse(BaseModel):
    """SSL证书操作响应"""
    success: bool
    message: str
    data: Optional[dict] = None
