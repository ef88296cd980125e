from __future__ import annotations

import logging
from typing import List, Optional

import typer
from rich import print
from rich.logging import RichHandler
from rich.table import Table

from .api import create_app, run_app
from .broker import MatchBroker
from .config import Settings, load_settings
from .data_models import PostView, ScoredPost
from .embedding import OpenAIEmbeddingOracle
from .errors import HotTakesError
from .matcher import LinearScanMatcher, validate_embedding
from .pipeline import SubmissionPipeline
from .storage import SecretStore


app = typer.Typer(help="Hot takes: share anonymously, match by meaning")


@app.callback()
def main(
	log_level: str = typer.Option("WARNING", help="Python logging level"),
):
	"""Configure logging for every command."""
	logging.basicConfig(
		level=log_level.upper(),
		format="%(message)s",
		datefmt="[%X]",
		handlers=[RichHandler(rich_tracebacks=True)],
	)


def _open_store(settings: Optional[Settings] = None) -> SecretStore:
	settings = settings or load_settings()
	store = SecretStore(settings.database_url)
	store.init_db()
	return store


def _matches_table(matches: List[ScoredPost]) -> Table:
	table = Table("id", "owner", "similarity", "text")
	for m in matches:
		table.add_row(m.id, m.owner_id or "anonymous", f"{m.similarity:.3f}", m.text)
	return table


def _posts_table(posts: List[PostView]) -> Table:
	table = Table("id", "created", "text")
	for p in posts:
		table.add_row(p.id, p.created_at.strftime("%Y-%m-%d %H:%M"), p.text)
	return table


def _fail(exc: HotTakesError) -> None:
	print(f"[red]Error:[/red] {exc.message}")
	raise typer.Exit(code=1)


@app.command("init-db")
def init_db():
	"""Create the database tables."""
	settings = load_settings()
	SecretStore(settings.database_url).init_db()
	print(f"[green]Database ready at[/green] {settings.database_url}")


@app.command()
def serve(
	host: Optional[str] = typer.Option(None, help="Bind address (default from HOTTAKES_HOST)"),
	port: Optional[int] = typer.Option(None, help="Port (default from HOTTAKES_PORT)"),
):
	"""Run the HTTP API with uvicorn."""
	settings = load_settings()
	updates = {k: v for k, v in {"host": host, "port": port}.items() if v is not None}
	settings = settings.model_copy(update=updates)
	run_app(create_app(settings), settings)


@app.command()
def submit(
	text: str = typer.Argument(..., help="The hot take to share"),
	owner: Optional[str] = typer.Option(None, help="Owner user id (omit to post anonymously)"),
):
	"""Embed, store and match one post."""
	settings = load_settings()
	store = SecretStore(settings.database_url)
	store.init_db()
	oracle = OpenAIEmbeddingOracle(model=settings.embedding_model, api_key=settings.openai_api_key)
	pipeline = SubmissionPipeline(store, oracle, top_k=settings.top_k)
	try:
		result = pipeline.submit(text, owner_id=owner)
	except HotTakesError as exc:
		_fail(exc)
	print(f"[green]Saved post[/green] {result.post.id}")
	if result.matches:
		print(_matches_table(result.matches))
	else:
		print("[yellow]No similar posts yet[/yellow]")


@app.command()
def similar(
	post_id: str = typer.Argument(..., help="Stored post to find neighbours for"),
	top_k: Optional[int] = typer.Option(None, min=1, help="Number of similar posts to show (default from HOTTAKES_TOP_K)"),
):
	"""Rank stored posts against an existing post, using its stored vector."""
	settings = load_settings()
	store = _open_store(settings)
	if top_k is None:
		top_k = settings.top_k
	try:
		post = store.get_post(post_id)
	except HotTakesError as exc:
		_fail(exc)
	if post is None:
		print(f"[red]Post not found:[/red] {post_id}")
		raise typer.Exit(code=1)
	query = validate_embedding(post.embedding)
	if query is None:
		print(f"[red]Post {post_id} has no usable embedding[/red]")
		raise typer.Exit(code=1)
	matches = LinearScanMatcher(store).search(query, exclude_id=post.id, requester_id=post.owner_id, k=top_k)
	print(_matches_table(matches))


@app.command()
def connect(
	user: str = typer.Argument(..., help="Caller user id"),
	caller_post_id: str = typer.Argument(..., help="The caller's post"),
	target_post_id: str = typer.Argument(..., help="The post to connect with"),
):
	"""Create (or reuse) a connection between two posts' owners."""
	broker = MatchBroker(_open_store())
	try:
		result = broker.connect(user, caller_post_id, target_post_id)
	except HotTakesError as exc:
		_fail(exc)
	print(f"[green]{result.message}[/green] -> {result.connection.id}")


@app.command()
def posts(
	user: str = typer.Argument(..., help="Owner user id"),
):
	"""List a user's posts, newest first."""
	broker = MatchBroker(_open_store())
	print(_posts_table(broker.list_posts(user)))


if __name__ == "__main__":
	app()
