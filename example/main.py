import asyncio

from prediction_server import PredictionServer, completed, pending
from prediction_client.classification import extract_error_text
from prediction_client.exceptions import PredictionError
from prediction_client.image_inputs import normalize_image_input
from prediction_client.models import PollingConfig
from prediction_client.prediction_client import PredictionClient

MAX_IMAGE_BYTES = 5 * 1024 * 1024


async def status_changed(prediction):
    print(f"Status changed to: {prediction.status}")


async def main():
    PORT = 8000
    server = PredictionServer(api_key="demo-key")
    server.on_submit("acme/try-on", (400, {"code": 400, "message": "garment_image is required"}), pending("job-1"))
    server.on_result(
        "job-1",
        pending("job-1", status="processing"),
        pending("job-1", status="processing"),
        completed("job-1", {"images": [{"url": "https://cdn.example.com/job-1.png"}]}),
    )
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    client = PredictionClient(
        base_url=f"http://localhost:{PORT}",
        api_key="demo-key",
        config=PollingConfig(timeout=30.0, poll_interval=1.0),
        on_status_change=status_changed,
    )

    person = normalize_image_input("https://cdn.example.com/person.png", "Person image", MAX_IMAGE_BYTES)
    garment = normalize_image_input("https://cdn.example.com/dress.png", "Garment image", MAX_IMAGE_BYTES)

    try:
        outcome = await client.submit_with_fallback(
            ["acme/missing-model", "acme/try-on"],
            [
                {"person_image": person},
                {"person_image": person, "garment_image": garment},
            ],
        )
        print(f"Model used: {outcome.model_path} (payload #{outcome.payload_index})")
        print(f"Result image: {outcome.prediction.image_url}")
    except TimeoutError as e:
        print(f"Polling timed out: {e}")
    except PredictionError as e:
        print(f"Error occurred: {extract_error_text(e)}")
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
