from typing import List, Literal, Optional
from pydantic import BaseModel, Field

class AnalyzeRequest(BaseModel):
    content: str = Field(..., min_length=1, description="Decoded QR text or URL to analyze.")

class FetchRequest(BaseModel):
    url: str = Field(..., min_length=1, description="Image URL to acquire and decode.")
    page_url: Optional[str] = Field(
        None,
        description="Page the image is embedded in; decides which loads count as cross-origin.",
    )

class ScanResponse(BaseModel):
    payload: str
    is_url: bool

class RiskResponse(BaseModel):
    content: str
    warnings: List[str]
    risk_level: Literal["low", "medium", "high"]
    is_url: bool
    summary: str

class LastResultResponse(BaseModel):
    action: str = "scanResult"
    success: bool
    data: Optional[str] = None
    error: Optional[str] = None
    timestamp: int
