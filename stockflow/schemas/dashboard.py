from datetime import date

from pydantic import BaseModel


class DashboardChartPointOut(BaseModel):
    date: date
    movements: int
    revenue: float
    sales: int


class LowStockProductOut(BaseModel):
    id: int
    sku: str
    name: str
    current_stock: int
    min_stock: int
    category_name: str | None = None


class DashboardCategoryOut(BaseModel):
    id: int
    name: str


class DashboardStatsOut(BaseModel):
    total_products: int
    low_stock_count: int
    over_stock_count: int
    total_movements: int
    total_asset_value: float
    monthly_revenue: float
    monthly_sales_count: int
    active_loans: int
    overdue_loans: int
    chart: list[DashboardChartPointOut]
    low_stock_list: list[LowStockProductOut]
    categories: list[DashboardCategoryOut]
