"""Default category tree used to initialize an empty store."""

from typing import Dict, List

DEFAULT_CATEGORIES: List[Dict[str, str]] = [
    {"key": "english", "name": "英語", "icon": "🇺🇸", "color": "#007bff"},
    {"key": "applied", "name": "応用情報", "icon": "💻", "color": "#28a745"},
    {"key": "applied_technology", "name": "テクノロジ", "icon": "🖥️", "color": "#20c997"},
    {"key": "applied_management", "name": "マネジメント", "icon": "📋", "color": "#6610f2"},
    {"key": "applied_strategy", "name": "ストラテジ", "icon": "📈", "color": "#e83e8c"},
    {"key": "advanced", "name": "高度情報", "icon": "🔧", "color": "#dc3545"},
    {"key": "gkentei", "name": "G検定", "icon": "🤖", "color": "#ffc107"},
    {"key": "ycne", "name": "YCNE", "icon": "🌐", "color": "#6c757d"},
    {"key": "security", "name": "情報セキュリティ", "icon": "🔒", "color": "#9b59b6"},
    {"key": "cloud", "name": "クラウド", "icon": "☁️", "color": "#17a2b8"},
    {"key": "database", "name": "データベース", "icon": "🗄️", "color": "#fd7e14"},
    {"key": "network", "name": "ネットワーク", "icon": "🌐", "color": "#6f42c1"},
    {"key": "information_media", "name": "情報メディア", "icon": "🎬", "color": "#795548"},
    {"key": "programming", "name": "プログラミング", "icon": "⌨️", "color": "#343a40"},
]

# child key -> parent key
DEFAULT_PARENTS: Dict[str, str] = {
    "applied_technology": "applied",
    "applied_management": "applied",
    "applied_strategy": "applied",
    "security": "applied_technology",
    "network": "applied_technology",
    "database": "applied_technology",
    "information_media": "applied_technology",
}
