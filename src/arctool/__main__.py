from .CLI import tar_command

if __name__ == "__main__":
    tar_command()
