from functools import wraps
import asyncio
import logging

from campus_market import Category, InMemoryListingStore, InMemoryMessageStore, MarketConfig
from campus_market import InMemoryIdentityProvider, MarketApp, MemoryWatermarkStore

config = MarketConfig.from_env()
logging.basicConfig(level=config.log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")


def async_decorator(f):
    """Decorator to allow calling an async function like a sync function"""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def device(listings, messages):
    """One phone: its own login and its own unread watermarks, shared backend."""
    return MarketApp(config, InMemoryIdentityProvider(config.campus_email_domain), listings, messages, MemoryWatermarkStore())


@async_decorator
async def main():
    listings, messages = InMemoryListingStore(), InMemoryMessageStore()
    seller_app = device(listings, messages)
    buyer_app = device(listings, messages)

    # 1. Sign up (campus addresses only)
    await seller_app.session.sign_up("sato" + config.campus_email_domain, "password", display_name="Sato")
    await buyer_app.session.sign_up("tanaka" + config.campus_email_domain, "password", display_name="Tanaka")

    # 2. Sell a fridge
    catalog = seller_app.catalog(Category.FRIDGE, notify=print)
    await catalog.open()
    fridge = await catalog.sell("Fridge", 3000, Category.FRIDGE, "data:image/png;base64,AAAA")
    print("Fridges:", [l.name for l in catalog.listings])

    # 3. The seller watches their dashboard
    dashboard = seller_app.seller_dashboard(notify=print)
    await dashboard.open()

    # 4. Buy it and ask a question
    detail = buyer_app.listing_detail(fridge.id, notify=print)
    await detail.open()
    await detail.buy(lambda listing: True)
    await detail.send("いつ受け取れますか？")
    print("Unread on seller dashboard:", dashboard.unread)

    # 5. The seller opens the chat and answers
    seller_chat = seller_app.listing_detail(fridge.id, notify=print)
    await seller_chat.open()
    await seller_chat.send("明日の昼はどうですか？")
    print("Unread after reading:", dashboard.unread)
    for message in seller_chat.messages:
        print(f"  {message.sender_display_name}: {message.text}")

    seller_app.close()
    buyer_app.close()


if __name__ == "__main__":
    main()
