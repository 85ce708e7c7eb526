"""
Health check script for a running harvest tap service
Can be used in monitoring, CI/CD, or startup validation
"""
import sys
import asyncio
import httpx

from harvest.config import settings

SERVICE_URL = f"http://localhost:{settings.port}"
TEST_PAGE = "https://www.twitch.tv/healthcheck"


async def check_health(client):
    """Test the health endpoint"""
    try:
        response = await client.get(f"{SERVICE_URL}/health")
        if response.status_code == 200 and response.json().get("status") == "healthy":
            print(f"[OK] Service healthy ({response.json().get('pages')} pages attached)")
            return True
        print(f"[FAIL] Health endpoint returned status {response.status_code}: {response.text}")
        return False
    except httpx.ConnectError:
        print(f"[FAIL] Cannot connect to service on port {settings.port}")
        return False
    except Exception as e:
        print(f"[FAIL] Health check failed: {e}")
        return False


async def check_page_round_trip(client):
    """Register a page, then unload it again"""
    try:
        response = await client.post(f"{SERVICE_URL}/pages", json={"url": TEST_PAGE})
        if response.status_code != 200:
            print(f"[FAIL] Page registration returned status {response.status_code}: {response.text}")
            return False

        page = response.json()
        if page.get("platform") != "Twitch" or not page.get("ready"):
            print(f"[FAIL] Unexpected registration: {page}")
            return False
        print(f"[OK] Registered page {page['page_id']} (channel={page['channel']})")

        response = await client.delete(f"{SERVICE_URL}/pages/{page['page_id']}")
        if response.status_code != 200:
            print(f"[FAIL] Page unload returned status {response.status_code}: {response.text}")
            return False
        print("[OK] Page unloaded")
        return True
    except httpx.ConnectError:
        print(f"[FAIL] Cannot connect to service on port {settings.port}")
        return False
    except Exception as e:
        print(f"[FAIL] Page round trip failed: {e}")
        return False


async def main():
    """Run all health checks"""
    print("Running health checks...")
    print("=" * 50)

    async with httpx.AsyncClient(timeout=5.0) as client:
        health_check = await check_health(client)
        page_check = await check_page_round_trip(client)

    print("=" * 50)
    if health_check and page_check:
        print("[OK] All health checks passed!")
        sys.exit(0)
    else:
        print("[FAIL] Some health checks failed!")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
