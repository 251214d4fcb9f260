"""Create database schema and seed a demo phone number and agent for development."""
from __future__ import annotations

import asyncio

from app.db.session import SessionLocal, create_schema, dispose_engine
from app.models.agent import Agent
from app.models.phone_number import PhoneNumber

PHONE_NUMBERS = [
	{
		"id": "pn-main-line",
		"number": "+14155550100",
		"external_id": "vapi-pn-main-line",
		"country_code": "US",
	},
]

AGENTS = [
	{
		"id": "agent-front-desk",
		"name": "Front Desk",
		"external_assistant_id": "vapi-asst-front-desk",
		"model": "gpt-4o",
	},
]


async def seed_phone_numbers() -> None:
	"""Insert or update demo phone numbers."""

	async with SessionLocal() as session:
		async with session.begin():
			for data in PHONE_NUMBERS:
				phone_number = await session.get(PhoneNumber, data["id"])
				if phone_number is None:
					session.add(PhoneNumber(**data))
				else:
					phone_number.number = data["number"]
					phone_number.external_id = data["external_id"]
					phone_number.country_code = data["country_code"]


async def seed_agents() -> None:
	"""Insert or update demo AI agents."""

	async with SessionLocal() as session:
		async with session.begin():
			for data in AGENTS:
				agent = await session.get(Agent, data["id"])
				if agent is None:
					session.add(Agent(**data))
				else:
					agent.name = data["name"]
					agent.external_assistant_id = data["external_assistant_id"]
					agent.model = data["model"]


async def main() -> None:
	await create_schema()
	await seed_phone_numbers()
	await seed_agents()
	await dispose_engine()
	print("Database schema ensured and demo phone number and agent seeded.")


if __name__ == "__main__":
	asyncio.run(main())
