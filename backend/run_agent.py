"""
SealForge Agent - Entry Point

Usage:
    python run_agent.py auto                      full autonomous pipeline
    python run_agent.py create "<topic>"          pipeline focused on a topic
    python run_agent.py scan                      environment scan only
    python run_agent.py decrypt <listing> [out]   decrypt a purchased listing
    python run_agent.py purchase <listing>        buy a listing
    python run_agent.py list                      marketplace listings
    python run_agent.py reattach <listing> <cap> <blob>
    python run_agent.py backfill-treasury         populate treasury from chain state
    python run_agent.py verify                    end-to-end sanity checks
    python run_agent.py custodian --port 8700     serve one key custodian
    python run_agent.py demo                      offline end-to-end run
"""

import argparse
import asyncio
import json
import logging
import os
import secrets
import sys
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Allow `python backend/run_agent.py` from the repo root
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from agents.sealforge_agent import SealForgeAgent, with_deployment
from infrastructure.config import SealForgeConfig, get_config, get_secrets
from infrastructure.errors import ConfigurationError
from seal.custodian import KeyCustodian, LocalCustodianClient
from services.keypair import SuiKeypair
from services.local_ledger import LocalLedger
from services.sui_ledger import SuiLedgerClient
from services.walrus_storage import LocalBlobStore
from sentry_config import capture_pipeline_breadcrumb, init_sentry, set_agent_context

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("SealForge")


def print_results(results):
    print("\n" + "=" * 50)
    print(f"  SealForge run: {sum(1 for r in results if r.ok)}/{len(results)} published")
    print("=" * 50)
    for r in results:
        print(f"\n  [{r.status.value.upper()}] {r.title}")
        if r.listing_id:
            print(f"    Listing: {r.listing_id}")
            print(f"    Explorer: {r.explorer_url}")
        if r.blob_id:
            print(f"    Blob: {r.blob_id}")
        if r.status.value == "partial":
            print(f"    Cap: {r.cap_id}  (reattach once the blob is available)")
        if r.error:
            print(f"    Error at {r.step}: {r.error}")
        else:
            print(f"    Price: {r.price_sui} SUI | Confidence: {r.confidence}%")


async def run_command(agent: SealForgeAgent, args) -> int:
    if args.command == "auto":
        results = await agent.auto()
        print_results(results)
        return 0 if all(r.ok for r in results) else 1

    if args.command == "create":
        results = await agent.create(args.topic)
        print_results(results)
        return 0 if all(r.ok for r in results) else 1

    if args.command == "scan":
        snapshot = await agent.scan_only()
        print(snapshot.text or "(no data)")
        print(json.dumps(snapshot.stats, indent=2))
        return 0

    if args.command == "decrypt":
        result = await agent.decrypt(args.listing_id)
        if not result.ok:
            print(f"❌ Decryption failed: {result.describe()}")
            for custodian_id, reason in result.failures.items():
                print(f"   {custodian_id[:18]}...: {reason}")
            return 1
        if args.out:
            Path(args.out).write_bytes(result.plaintext)
            print(f"✅ Saved {len(result.plaintext)} bytes to {args.out}")
        else:
            print(result.text)
        return 0

    if args.command == "purchase":
        outcome = await agent.purchase(args.listing_id)
        if not outcome.ok:
            print(f"❌ Purchase failed: {outcome.error}")
            return 1
        print(f"✅ Purchased. TX: {agent.config.explorer_link('tx', outcome.value.digest)}")
        return 0

    if args.command == "list":
        listings = await agent.list_listings()
        print(f"\n{len(listings)} listings:")
        for listing in listings:
            content = "✓" if listing.has_content else "✗ no content"
            print(f"  {listing.object_id}  {listing.price_sui:.2f} SUI  {content}  \"{listing.title}\"")
        return 0

    if args.command == "reattach":
        result = await agent.reattach(args.listing_id, args.cap_id, args.blob_id)
        print_results([result])
        return 0 if result.ok else 1

    if args.command == "backfill-treasury":
        report = await agent.backfill_treasury()
        print(f"Content recorded: {report.content_recorded}")
        print(f"Earnings recorded: {report.earnings_recorded}")
        if report.failures:
            print(f"Failures: {len(report.failures)}")
        if report.final_state:
            print(json.dumps(report.final_state, indent=2))
        return 0 if not report.failures else 1

    if args.command == "verify":
        checks = await agent.verify_all()
        return 0 if all(checks.values()) else 1

    raise ValueError(f"Unknown command {args.command}")


async def run_demo(config: SealForgeConfig) -> int:
    """Producer and consumer end to end with a local ledger, blob store and two custodians"""
    creator = SuiKeypair.generate()
    buyer = SuiKeypair.generate()
    outsider = SuiKeypair.generate()

    ledger = LocalLedger(creator.address)
    storage = LocalBlobStore()
    custodians = [
        KeyCustodian.generate("0x" + secrets.token_hex(32), ledger, ledger.package_id, name=f"custodian-{i + 1}")
        for i in range(2)
    ]
    clients = [LocalCustodianClient(c) for c in custodians]

    config = with_deployment(config, ledger.package_id, ledger.marketplace.object_id, [c.info() for c in custodians])
    config = replace(config, seal=replace(config.seal, threshold=2))

    def agent_for(keypair):
        return SealForgeAgent(config, ledger, storage, keypair, clients)

    producer = agent_for(creator)
    published = await producer.publisher.publish_content(
        "Demo: Hello SealForge", "Round trip demo", "blue-data", 0.1, b"Hello SealForge!"
    )
    print(f"Published: [{published.status.value}] {published.listing_id}")
    if not published.ok:
        return 1

    as_creator = await producer.decrypt(published.listing_id)
    print(f"Creator decrypt:  {as_creator.text if as_creator.ok else as_creator.describe()}")

    await ledger.purchase(published.listing_id, buyer=buyer.address)
    as_buyer = await agent_for(buyer).decrypt(published.listing_id)
    print(f"Buyer decrypt:    {as_buyer.text if as_buyer.ok else as_buyer.describe()}")

    as_outsider = await agent_for(outsider).decrypt(published.listing_id)
    print(f"Outsider decrypt: {as_outsider.describe()}")

    treasury = await producer.treasury.pnl()
    print(f"Treasury: {json.dumps(treasury)}")

    return 0 if as_creator.ok and as_buyer.ok and not as_outsider.ok else 1


def serve_custodian(config: SealForgeConfig, port: int):
    import uvicorn
    from api.custodian_router import create_app

    object_id = os.environ.get("SEAL_CUSTODIAN_ID")
    key_hex = os.environ.get("SEAL_CUSTODIAN_KEY")
    if not object_id or not key_hex:
        raise ConfigurationError("SEAL_CUSTODIAN_ID and SEAL_CUSTODIAN_KEY must be set to serve a custodian")

    # Admission checks are dry runs; no signing key needed
    ledger = SuiLedgerClient(config.network)
    custodian = KeyCustodian.from_private_bytes(object_id, bytes.fromhex(key_hex), ledger, config.network.package_id)
    uvicorn.run(create_app(custodian), host="0.0.0.0", port=port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="run_agent", description="SealForge autonomous intelligence agent")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("auto", help="Full autonomous pipeline")
    create = sub.add_parser("create", help="Pipeline focused on a topic")
    create.add_argument("topic")
    sub.add_parser("scan", help="Environment scan only")

    decrypt = sub.add_parser("decrypt", help="Decrypt a listing you created or bought")
    decrypt.add_argument("listing_id")
    decrypt.add_argument("out", nargs="?")

    purchase = sub.add_parser("purchase", help="Buy a listing")
    purchase.add_argument("listing_id")

    sub.add_parser("list", help="List marketplace listings")

    reattach = sub.add_parser("reattach", help="Attach a blob to a partially published listing")
    reattach.add_argument("listing_id")
    reattach.add_argument("cap_id")
    reattach.add_argument("blob_id")

    sub.add_parser("backfill-treasury", help="Populate the treasury from marketplace history")
    sub.add_parser("verify", help="End-to-end sanity checks")

    custodian = sub.add_parser("custodian", help="Serve one key custodian over HTTP")
    custodian.add_argument("--port", type=int, default=8700)

    sub.add_parser("demo", help="Offline end-to-end run")
    return parser


async def main(args, config: SealForgeConfig) -> int:
    if args.command == "demo":
        return await run_demo(config)

    secrets_manager = get_secrets()
    init_sentry(secrets_manager.get("SENTRY_DSN"))

    agent = SealForgeAgent.from_config(config, secrets_manager)
    agent.activity.listeners.append(capture_pipeline_breadcrumb)
    set_agent_context(agent.keypair.address, config.network.network)
    try:
        return await run_command(agent, args)
    finally:
        await agent.close()


def cli(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = get_config()
        if args.command == "custodian":
            serve_custodian(config, args.port)
            return 0
        return asyncio.run(main(args, config))
    except ConfigurationError as e:
        logger.error(f"❌ {e.message}")
        return 2
    except KeyboardInterrupt:
        print("\n👋 Agent stopped")
        return 130


if __name__ == "__main__":
    sys.exit(cli())
