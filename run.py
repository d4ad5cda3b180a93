import uvicorn
import logging

if __name__ == "__main__":
    logging.info("Starting up Rhombus backend...")
    uvicorn.run("rhombus.main:app", host="127.0.0.1", port=8000, reload=True)
