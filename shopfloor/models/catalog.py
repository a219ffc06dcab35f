from __future__ import annotations

from dataclasses import dataclass


GENERAL_VENUES = ["工位一", "工位二", "工位三", "工位四", "備用工位一", "備用工位二", "備用工位三", "101會議室"]
CONFIDENTIAL_VENUES = ["保密車間一(白門)", "保密車間二(灰門)", "保密車間三(B3-1)", "保密車間三(B3-2)"]
ALL_VENUES = GENERAL_VENUES + CONFIDENTIAL_VENUES

TIME_SLOTS = [f"{index // 2:02d}:{'00' if index % 2 == 0 else '30'}" for index in range(48)]
# Closing bound for a booking that runs to midnight; sorts after every slot.
END_OF_DAY = "24:00"

CATEGORY_LOCKS = "門鎖類"
CATEGORY_TOOLS = "工具類"
CATEGORY_EQUIPMENT = "設備類"
CATEGORIES = [CATEGORY_LOCKS, CATEGORY_TOOLS, CATEGORY_EQUIPMENT]

# Items in these categories must be photographed on return.
PHOTO_REQUIRED_CATEGORIES = {CATEGORY_TOOLS}
MAX_PHOTOS_PER_ITEM = 4


@dataclass(frozen=True)
class ResourceItem:
    id: str
    name: str
    category: str


RESOURCES = [
    ResourceItem("l1", "鐵門遙控器", CATEGORY_LOCKS),
    ResourceItem("l2", "鐵門牆上鑰匙1", CATEGORY_LOCKS),
    ResourceItem("l3", "鐵門牆上鑰匙2", CATEGORY_LOCKS),
    ResourceItem("l4", "鐵門牆上鑰匙3", CATEGORY_LOCKS),
    ResourceItem("l5", "B2倉庫鑰匙", CATEGORY_LOCKS),
    ResourceItem("t1", "工具櫃1(保2內)", CATEGORY_TOOLS),
    ResourceItem("t2", "工具櫃2(工位1旁)", CATEGORY_TOOLS),
    ResourceItem("t3", "工具櫃3(頂高機旁)", CATEGORY_TOOLS),
    ResourceItem("t4", "麥克風櫃", CATEGORY_TOOLS),
    ResourceItem("t5", "頂高塊櫃", CATEGORY_TOOLS),
    ResourceItem("t6", "紅工具櫃", CATEGORY_TOOLS),
    ResourceItem("e1", "電瓶快速充電機 (100976)", CATEGORY_EQUIPMENT),
    ResourceItem("e2", "移動電視(101931) & 電視遙控器(在6F)", CATEGORY_EQUIPMENT),
    ResourceItem("e3", "電鑽1", CATEGORY_EQUIPMENT),
    ResourceItem("e4", "電鑽2", CATEGORY_EQUIPMENT),
    ResourceItem("e5", "游標卡尺", CATEGORY_EQUIPMENT),
    ResourceItem("e6", "蘋果公務機 (102488)", CATEGORY_EQUIPMENT),
    ResourceItem("e7", "安卓公務機 (102502)", CATEGORY_EQUIPMENT),
    ResourceItem("e8", "護貝機 (開發驗證部的)", CATEGORY_EQUIPMENT),
    ResourceItem("e9", "電子式扭力板手工具 (102338)", CATEGORY_EQUIPMENT),
    ResourceItem("e10", "DC電源供應器 (100788)", CATEGORY_EQUIPMENT),
    ResourceItem("e11", "DC電源供應器 (100790)", CATEGORY_EQUIPMENT),
    ResourceItem("e12", "電源供應器 (102101)", CATEGORY_EQUIPMENT),
    ResourceItem("e13", "數位儲存示波器 (102100)", CATEGORY_EQUIPMENT),
    ResourceItem("e14", "手持式數位儲存示波器 (102099)", CATEGORY_EQUIPMENT),
    ResourceItem("e15", "多通道函數信號產生器 (102098)", CATEGORY_EQUIPMENT),
]
RESOURCES_BY_ID = {item.id: item for item in RESOURCES}


def venue_group(venue: str) -> str | None:
    if venue in GENERAL_VENUES:
        return "general"
    if venue in CONFIDENTIAL_VENUES:
        return "confidential"
    return None


def requires_return_photo(item_id: str) -> bool:
    item = RESOURCES_BY_ID.get(item_id)
    return bool(item and item.category in PHOTO_REQUIRED_CATEGORIES)


def serialize_resource(item: ResourceItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "category": item.category,
        "requiresReturnPhoto": item.category in PHOTO_REQUIRED_CATEGORIES,
    }
