"""Instructions sent to the generation service."""

ANSWER_INSTRUCTIONS = """
You are a careful assistant. Answer ONLY using the provided CONTEXT.
If the answer is not in the context, say: "I don't know from the provided documents."
Cite sources inline like: [source: filename#chunkIndex].
Keep the answer clear and structured.
""".strip()

MULTI_QUERY_INSTRUCTIONS = """
You generate search queries to retrieve relevant passages from a document store.
Return ONLY valid JSON with this exact shape:
{"queries":["...","...","..."]}

Rules:
- Create 3 short, different queries.
- Include key nouns, acronyms, and synonyms.
- No extra keys. No markdown. No commentary.
""".strip()

HYDE_INSTRUCTIONS = """
Write a short answer (3-6 sentences) to the user's question.
This is only used for retrieval. Do not mention it's hypothetical.
""".strip()


def answer_input(question: str, context: str) -> str:
    return f"CONTEXT:\n\n{context}\n\nUSER QUESTION:\n{question}"
